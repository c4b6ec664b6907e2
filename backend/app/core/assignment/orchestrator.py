import asyncio
import random
import uuid
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.core.assignment.categorizer import Categorization, categorize
from app.core.assignment.repository import AssignmentRepository
from app.core.assignment.rules import DEFAULT_RULES, AssignmentRules
from app.core.assignment.selection import ScoredTeam, select_best_team
from app.core.assignment.validator import DEFAULT_COMPLETION_DWELL, TeamAssignmentValidator, check_team_eligibility
from app.core.audit.service import audit
from app.core.errors import AssignmentError, DomainError, ErrorCode, TransitionError
from app.core.incidents.lifecycle import IncidentStatus, validate_revert, validate_transition
from app.core.incidents.models import Incident
from app.core.notifications.publisher import (
    ASSIGNMENT_UPDATE, NEW_ASSIGNMENT, STATUS_UPDATE, NotificationEvent, NotificationPublisher,
)
from app.core.rbac.models import ASSIGNING_ROLES, Principal, User, UserRole
from app.core.teams.models import Team
from app.core.teams.service import adjust_capacity, pick_leader
from app.core.workorders.lifecycle import MIRRORED_STATUS, WorkOrderStatus, can_transition
from app.core.workorders.models import WorkOrder, WorkerProgress
from app.db.base import utcnow
from app.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AssignmentOutcome:
    incident_id: uuid.UUID
    team_id: uuid.UUID
    team_name: str
    work_order_id: uuid.UUID | None
    categorization: Categorization
    score: ScoredTeam
    assigned_at: datetime
    sla_due_at: datetime
    dry_run: bool

    def as_dict(self) -> dict:
        return {
            "incident_id": self.incident_id,
            "team_id": self.team_id,
            "team_name": self.team_name,
            "work_order_id": self.work_order_id,
            "category": self.categorization.category,
            "category_reasoning": self.categorization.reasoning,
            "sla_due_at": self.sla_due_at,
            "dry_run": self.dry_run,
            "score": {
                "team_id": self.team_id,
                "team_name": self.team_name,
                "final_score": round(self.score.final_score, 6),
                "rule_bonus": round(self.score.rule_bonus, 6),
                "geographic_match": self.score.geographic_match,
                "time_match": self.score.time_match,
                "capability_match": self.score.capability_match,
            },
        }


class _Abort(Exception):
    """Carries an expected failure out of a transaction block so it rolls back."""

    def __init__(self, error: DomainError):
        super().__init__(error.message)
        self.error = error


def _snapshot(incident: Incident) -> dict:
    return {
        "status": incident.status,
        "assigned_team_id": incident.assigned_team_id,
        "assigned_at": incident.assigned_at,
        "priority": incident.priority,
    }


class AssignmentOrchestrator:
    """
    Performs incident -> team assignment, revert and status transitions.

    Each operation runs in its own transaction under a per-incident lock, with
    incident and team rows read FOR UPDATE and version-checked on write.
    Notifications go out only after the transaction has committed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        rules: AssignmentRules = DEFAULT_RULES,
        notifier: NotificationPublisher | None = None,
        completion_min_dwell: timedelta = DEFAULT_COMPLETION_DWELL,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.rules = rules
        self.notifier = notifier or NotificationPublisher()
        self.completion_min_dwell = completion_min_dwell
        self.rng = rng or random.Random()
        self.clock = clock
        self._locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, incident_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(incident_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[incident_id] = lock
        return lock

    async def _run(self, operation: str, incident_id: uuid.UUID, body):
        """Run ``body(session, events)`` in one transaction, translating failures into DomainErrors."""
        events: list[NotificationEvent] = []
        async with self._lock_for(incident_id):
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        result = await body(session, events)
            except _Abort as abort:
                error = abort.error
                log = logger.error if error.category.value == "integrity" else logger.info
                log(f"{operation}_rejected", incident_id=str(incident_id), code=error.code.value, reason=error.message)
                return error
            except (StaleDataError, IntegrityError) as exc:
                logger.error(f"{operation}_conflict", incident_id=str(incident_id), error=str(exc))
                return AssignmentError(
                    ErrorCode.ASSIGNMENT_INTEGRITY_VIOLATION,
                    "Incident or team was modified concurrently",
                    {"incident_id": str(incident_id)},
                )
            except (OperationalError, InterfaceError):
                raise
            except Exception:
                logger.exception(f"{operation}_failed", incident_id=str(incident_id))
                return AssignmentError(ErrorCode.SYSTEM_ERROR, f"{operation.capitalize()} failed due to an internal error")
        if events:
            await self.notifier.publish(events)
        return result

    # ── Authorization ────────────────────────────────────────────────────────

    async def _authorize_manager(
        self, repo: AssignmentRepository, principal: Principal, *, require_available_team: bool = True,
    ) -> tuple[User, list[Team]]:
        manager = await repo.get_user(principal.id)
        if manager is None or not manager.is_active or manager.role not in ASSIGNING_ROLES:
            raise _Abort(AssignmentError(
                ErrorCode.MANAGER_NOT_AUTHORIZED,
                "Only active managers and admins can change assignments",
                {"principal_id": str(principal.id)},
            ))
        teams = await repo.teams_for_manager(manager)
        if require_available_team and not any(t.is_available for t in teams):
            raise _Abort(AssignmentError(
                ErrorCode.MANAGER_NOT_AUTHORIZED,
                "Manager has no available team",
                {"principal_id": str(principal.id), "teams": len(teams)},
            ))
        return manager, teams

    async def _authorize_owner(self, repo: AssignmentRepository, principal: Principal, incident: Incident) -> User:
        """Admins may touch any incident; a manager only unassigned ones or those held by a team they manage."""
        manager, teams = await self._authorize_manager(repo, principal, require_available_team=False)
        if (
            manager.role != UserRole.ADMIN.value
            and incident.assigned_team_id is not None
            and incident.assigned_team_id not in {t.id for t in teams}
        ):
            raise _Abort(AssignmentError(
                ErrorCode.MANAGER_NOT_AUTHORIZED,
                "Incident is assigned to a team outside this manager's teams",
                {"team_id": str(incident.assigned_team_id)},
            ))
        return manager

    # ── Assign ───────────────────────────────────────────────────────────────

    async def assign(
        self,
        incident_id: uuid.UUID,
        principal: Principal,
        *,
        force_assign: bool = False,
        dry_run: bool = False,
        team_id: uuid.UUID | None = None,
    ) -> AssignmentOutcome | DomainError:
        """
        Categorize a verified incident, pick the best team the principal manages
        and bind them with a new work order. ``force_assign`` lifts the
        per-category cap only, never the team's overall capacity.
        """
        async def body(session: AsyncSession, events: list[NotificationEvent]) -> AssignmentOutcome:
            repo = AssignmentRepository(session)
            incident = await repo.get_incident(incident_id, for_update=True)
            if incident is None:
                raise _Abort(AssignmentError(ErrorCode.INCIDENT_NOT_FOUND, "Incident not found", {"incident_id": str(incident_id)}))
            if incident.assigned_team_id is not None or await repo.any_work_order_for(incident.id):
                raise _Abort(AssignmentError(
                    ErrorCode.ASSIGNMENT_INTEGRITY_VIOLATION,
                    "Incident is already assigned",
                    {"incident_id": str(incident.id), "status": incident.status, "team_id": str(incident.assigned_team_id)},
                ))
            if incident.status != IncidentStatus.VERIFIED.value:
                raise _Abort(AssignmentError(
                    ErrorCode.INCIDENT_NOT_READY,
                    f"Incident must be verified before assignment, it is '{incident.status}'",
                    {"incident_id": str(incident.id), "status": incident.status},
                ))

            manager, teams = await self._authorize_manager(repo, principal)
            if team_id is not None:
                teams = [t for t in teams if t.id == team_id]
                if not teams:
                    raise _Abort(AssignmentError(
                        ErrorCode.MANAGER_NOT_AUTHORIZED,
                        "Requested team is not managed by this principal",
                        {"team_id": str(team_id)},
                    ))

            categorization = categorize(incident, self.rules)
            candidates = await repo.candidates(teams, categorization.category)
            now = self.clock()
            selected = select_best_team(
                candidates, incident, categorization,
                now=now, rng=self.rng, rules=self.rules, ignore_category_cap=force_assign,
            )
            if isinstance(selected, AssignmentError):
                rejections = {
                    c.name: (error.code.value if (error := check_team_eligibility(c)) else ErrorCode.TEAM_CATEGORY_CAP_REACHED.value)
                    for c in candidates
                }
                raise _Abort(AssignmentError(
                    ErrorCode.NO_SUITABLE_TEAM,
                    f"No suitable team for this {categorization.category} incident",
                    {"category": categorization.category, "rejections": rejections},
                ))

            # Re-check the chosen team under lock, another path may have filled it meanwhile
            team = await repo.get_team(selected.team_id, for_update=True)
            members = await repo.active_members(selected.team_id) if team else []
            load = (await repo.category_load([selected.team_id], categorization.category))[selected.team_id]
            if (
                team is None
                or not team.is_available
                or team.current_capacity >= team.max_capacity
                or not members
                or (not force_assign and load >= categorization.rule.max_assignments_per_team)
            ):
                raise _Abort(AssignmentError(
                    ErrorCode.ASSIGNMENT_INTEGRITY_VIOLATION,
                    "Selected team can no longer take the incident",
                    {"team_id": str(selected.team_id)},
                ))

            sla_due_at = now + categorization.rule.sla
            if dry_run:
                return AssignmentOutcome(
                    incident_id=incident.id,
                    team_id=team.id,
                    team_name=team.name,
                    work_order_id=None,
                    categorization=categorization,
                    score=selected,
                    assigned_at=now,
                    sla_due_at=sla_due_at,
                    dry_run=True,
                )

            before = _snapshot(incident)
            work_order = WorkOrder(
                incident_id=incident.id,
                team_id=team.id,
                category=categorization.category,
                status=WorkOrderStatus.NOT_STARTED.value,
                assigned_at=now,
            )
            session.add(work_order)
            await session.flush()
            await adjust_capacity(session, team, +1, principal.id, f"assigned incident {incident.tracking_no}")
            for member in members:
                session.add(WorkerProgress(work_order_id=work_order.id, worker_id=member.id, status="pending"))

            incident.status = IncidentStatus.ASSIGNED.value
            incident.assigned_team_id = team.id
            incident.assigned_at = now
            incident.priority = categorization.category
            incident.category_reasoning = categorization.reasoning
            incident.sla_due_at = sla_due_at
            await session.flush()

            await audit(
                session,
                actor_id=principal.id,
                action="incident.assign",
                table_name="incidents",
                reference_id=incident.id,
                details={
                    "before": before,
                    "after": _snapshot(incident),
                    "work_order_id": work_order.id,
                    "score": round(selected.final_score, 6),
                    "rule_bonus": round(selected.rule_bonus, 6),
                    "applied_rules": selected.applied_rules,
                    "reasoning": categorization.reasoning,
                    "force_assign": force_assign,
                },
            )

            leader = pick_leader(members)
            if leader:
                events += await self.notifier.stage(
                    session,
                    event=NEW_ASSIGNMENT,
                    type="task",
                    title="New Team Assignment",
                    message=f"Your team '{team.name}' has been assigned incident {incident.tracking_no}: {incident.title}",
                    related_id=incident.id,
                    user_ids=[leader.id],
                )
            workers = [m.id for m in members if leader is None or m.id != leader.id]
            if workers:
                events += await self.notifier.stage(
                    session,
                    event=NEW_ASSIGNMENT,
                    type="task",
                    title="New Job Assignment",
                    message=f"You have a new job for incident {incident.tracking_no}: {incident.title}",
                    related_id=incident.id,
                    user_ids=workers,
                )
            events += await self.notifier.stage(
                session,
                event=ASSIGNMENT_UPDATE,
                title="Assignment Completed",
                message=f"Incident {incident.tracking_no} ({categorization.category}) assigned to {team.name}",
                related_id=incident.id,
                role=UserRole.MANAGER.value,
            )

            logger.info(
                "incident_assigned",
                incident_id=str(incident.id),
                team_id=str(team.id),
                category=categorization.category,
                score=round(selected.final_score, 4),
                manager_id=str(manager.id),
            )
            return AssignmentOutcome(
                incident_id=incident.id,
                team_id=team.id,
                team_name=team.name,
                work_order_id=work_order.id,
                categorization=categorization,
                score=selected,
                assigned_at=now,
                sla_due_at=sla_due_at,
                dry_run=False,
            )

        return await self._run("assign", incident_id, body)

    # ── Revert ───────────────────────────────────────────────────────────────

    async def revert(self, incident_id: uuid.UUID, principal: Principal, reason: str | None = None) -> Incident | DomainError:
        """Undo an assignment: drop the work order, free the slot and put the incident back to verified."""
        async def body(session: AsyncSession, events: list[NotificationEvent]) -> Incident:
            repo = AssignmentRepository(session)
            incident = await repo.get_incident(incident_id, for_update=True)
            if incident is None:
                raise _Abort(AssignmentError(ErrorCode.INCIDENT_NOT_FOUND, "Incident not found", {"incident_id": str(incident_id)}))
            error = validate_revert(incident.status)
            if error:
                raise _Abort(error)
            await self._authorize_owner(repo, principal, incident)

            before = _snapshot(incident)
            team = await repo.get_team(incident.assigned_team_id, for_update=True) if incident.assigned_team_id else None
            members = await repo.active_members(team.id) if team else []
            work_order = await repo.any_work_order_for(incident.id)
            if work_order is not None:
                if team is not None and work_order.team_id != team.id:
                    logger.error(
                        "work_order_team_mismatch",
                        incident_id=str(incident.id),
                        work_order_team_id=str(work_order.team_id),
                        incident_team_id=str(team.id),
                    )
                was_active = work_order.is_active
                for progress in await repo.progress_for(work_order.id):
                    await session.delete(progress)
                await session.delete(work_order)
                await session.flush()
                if team is not None and was_active:
                    await adjust_capacity(session, team, -1, principal.id, f"reverted incident {incident.tracking_no}")

            incident.status = IncidentStatus.VERIFIED.value
            incident.assigned_team_id = None
            incident.assigned_at = None
            incident.priority = None
            incident.category_reasoning = None
            incident.sla_due_at = None
            await session.flush()

            await audit(
                session,
                actor_id=principal.id,
                action="incident.revert",
                table_name="incidents",
                reference_id=incident.id,
                details={
                    "before": before,
                    "after": _snapshot(incident),
                    "work_order_id": work_order.id if work_order else None,
                    "reason": reason,
                },
            )
            events += await self.notifier.stage(
                session,
                event=STATUS_UPDATE,
                title="Assignment Reverted",
                message=f"Incident {incident.tracking_no} was returned to the queue" + (f": {reason}" if reason else ""),
                related_id=incident.id,
                user_ids=[m.id for m in members],
                role=UserRole.MANAGER.value,
            )
            logger.info("incident_reverted", incident_id=str(incident.id), team_id=str(before["assigned_team_id"]))
            await session.refresh(incident)
            return incident

        return await self._run("revert", incident_id, body)

    # ── Transition ───────────────────────────────────────────────────────────

    async def transition(
        self,
        incident_id: uuid.UUID,
        principal: Principal,
        target: IncidentStatus | str,
        reason: str | None = None,
    ) -> Incident | DomainError:
        """
        Move an incident along the status table, keeping its work order and the
        team's capacity in step. Entering ``assigned`` goes through ``assign``.
        """
        async def body(session: AsyncSession, events: list[NotificationEvent]) -> Incident:
            repo = AssignmentRepository(session)
            incident = await repo.get_incident(incident_id, for_update=True)
            if incident is None:
                raise _Abort(AssignmentError(ErrorCode.INCIDENT_NOT_FOUND, "Incident not found", {"incident_id": str(incident_id)}))
            error = validate_transition(incident.status, target)
            if error:
                raise _Abort(error)
            requested = IncidentStatus(target)
            if requested == IncidentStatus.ASSIGNED:
                raise _Abort(TransitionError(
                    ErrorCode.INVALID_TRANSITION,
                    "Use the assign operation to assign an incident",
                    {"from": incident.status, "to": requested.value, "allowed": []},
                ))

            await self._authorize_owner(repo, principal, incident)

            now = self.clock()
            before = _snapshot(incident)
            team: Team | None = None
            members: list[User] = []
            work_order: WorkOrder | None = None

            if requested in (IncidentStatus.IN_PROGRESS, IncidentStatus.COMPLETED):
                validator = TeamAssignmentValidator(repo, self.completion_min_dwell)
                validated = await validator.validate_assignment(incident, requested, now, lock=True)
                if isinstance(validated, AssignmentError):
                    raise _Abort(validated)
                team, members, work_order = validated.team, validated.members, validated.work_order
            elif incident.assigned_team_id is not None:
                team = await repo.get_team(incident.assigned_team_id, for_update=True)
                members = await repo.active_members(team.id) if team else []
                active = await repo.work_orders_for(incident.id)
                work_order = active[0] if active else None

            if work_order is not None:
                mirrored = MIRRORED_STATUS[requested.value]
                if not can_transition(work_order.status, mirrored.value):
                    raise _Abort(AssignmentError(
                        ErrorCode.ASSIGNMENT_INTEGRITY_VIOLATION,
                        f"Work order cannot move from '{work_order.status}' to '{mirrored.value}'",
                        {"work_order_id": str(work_order.id)},
                    ))
                work_order.status = mirrored.value
                if mirrored == WorkOrderStatus.IN_PROGRESS:
                    work_order.started_at = now
                elif mirrored in (WorkOrderStatus.COMPLETED, WorkOrderStatus.CANCELLED):
                    work_order.completed_at = now
                await session.flush()
                if mirrored in (WorkOrderStatus.COMPLETED, WorkOrderStatus.CANCELLED) and team is not None:
                    await adjust_capacity(session, team, -1, principal.id, f"{requested.value} incident {incident.tracking_no}")

            incident.status = requested.value
            if requested == IncidentStatus.CANCELLED:
                incident.assigned_team_id = None
                incident.assigned_at = None
            await session.flush()

            await audit(
                session,
                actor_id=principal.id,
                action="incident.transition",
                table_name="incidents",
                reference_id=incident.id,
                details={
                    "from": before["status"],
                    "to": requested.value,
                    "before": before,
                    "after": _snapshot(incident),
                    "work_order_id": work_order.id if work_order else None,
                    "reason": reason,
                },
            )
            events += await self.notifier.stage(
                session,
                event=STATUS_UPDATE,
                title="Incident Status Updated",
                message=f"Incident {incident.tracking_no} is now {requested.value.replace('_', ' ')}",
                related_id=incident.id,
                user_ids=[m.id for m in members],
                role=UserRole.MANAGER.value,
            )
            logger.info("incident_transition", incident_id=str(incident.id), from_status=before["status"], to_status=requested.value)
            await session.refresh(incident)
            return incident

        return await self._run("transition", incident_id, body)
