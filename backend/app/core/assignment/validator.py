import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from app.core.errors import AssignmentError, ErrorCode
from app.core.incidents.lifecycle import IncidentStatus
from app.core.incidents.models import Incident
from app.core.rbac.models import ASSIGNING_ROLES, User
from app.core.teams.models import Team
from app.core.workorders.models import WorkOrder
from app.db.base import as_utc

DEFAULT_COMPLETION_DWELL = timedelta(minutes=60)

# Target statuses that also require the owning manager account to be valid
MANAGED_TARGETS = frozenset({IncidentStatus.IN_PROGRESS, IncidentStatus.COMPLETED})


class TeamLookup(Protocol):
    async def get_team(self, team_id: uuid.UUID, *, for_update: bool = False) -> Team | None: ...
    async def get_user(self, user_id: uuid.UUID) -> User | None: ...
    async def active_members(self, team_id: uuid.UUID) -> list[User]: ...
    async def work_orders_for(self, incident_id: uuid.UUID) -> list[WorkOrder]: ...


@dataclass(frozen=True)
class ValidatedTeam:
    team: Team
    work_order: WorkOrder
    members: list[User]


def check_team_eligibility(team) -> AssignmentError | None:
    """Availability, capacity and membership checks on a TeamCandidate, in that order."""
    if not team.is_available:
        return AssignmentError(ErrorCode.TEAM_UNAVAILABLE, f"Team '{team.name}' is not available", {"team_id": str(team.team_id)})
    if team.current_capacity >= team.max_capacity:
        return AssignmentError(
            ErrorCode.TEAM_AT_CAPACITY,
            f"Team '{team.name}' is at capacity ({team.current_capacity}/{team.max_capacity})",
            {"team_id": str(team.team_id), "current_capacity": team.current_capacity, "max_capacity": team.max_capacity},
        )
    if team.active_members < 1:
        return AssignmentError(ErrorCode.TEAM_NO_ACTIVE_MEMBERS, f"Team '{team.name}' has no active members", {"team_id": str(team.team_id)})
    return None


class TeamAssignmentValidator:
    """
    Checks that an incident's team binding can carry it into ``target_status``.

    Failures are returned, not raised, so callers can report the exact reason.
    """

    def __init__(self, repo: TeamLookup, completion_min_dwell: timedelta = DEFAULT_COMPLETION_DWELL):
        self.repo = repo
        self.completion_min_dwell = completion_min_dwell

    async def validate_assignment(
        self,
        incident: Incident,
        target_status: IncidentStatus | str,
        now: datetime,
        *,
        lock: bool = False,
    ) -> ValidatedTeam | AssignmentError:
        target = IncidentStatus(target_status)
        details = {"incident_id": str(incident.id), "target_status": target.value}

        if incident.assigned_team_id is None:
            return AssignmentError(
                ErrorCode.TEAM_ASSIGNMENT_REQUIRED,
                "Incident must be assigned to a team before this status change",
                details,
            )

        team = await self.repo.get_team(incident.assigned_team_id, for_update=lock)
        if team is None:
            return AssignmentError(
                ErrorCode.TEAM_NOT_FOUND,
                "Assigned team no longer exists",
                {**details, "team_id": str(incident.assigned_team_id)},
            )
        details["team_id"] = str(team.id)

        if not team.is_available:
            return AssignmentError(ErrorCode.TEAM_UNAVAILABLE, f"Team '{team.name}' is not available", details)

        work_orders = await self.repo.work_orders_for(incident.id)
        # The incident's own active work order already occupies one slot
        own_slot = 1 if any(wo.team_id == team.id and wo.is_active for wo in work_orders) else 0
        if team.current_capacity - own_slot >= team.max_capacity:
            return AssignmentError(
                ErrorCode.TEAM_AT_CAPACITY,
                f"Team '{team.name}' is at capacity ({team.current_capacity}/{team.max_capacity})",
                {**details, "current_capacity": team.current_capacity, "max_capacity": team.max_capacity},
            )

        members = await self.repo.active_members(team.id)
        if not members:
            return AssignmentError(ErrorCode.TEAM_NO_ACTIVE_MEMBERS, f"Team '{team.name}' has no active members", details)

        if len(work_orders) != 1:
            return AssignmentError(
                ErrorCode.WORK_ORDER_MISSING,
                f"Expected exactly one work order for the incident, found {len(work_orders)}",
                {**details, "work_orders": len(work_orders)},
            )
        work_order = work_orders[0]
        if work_order.team_id != team.id:
            return AssignmentError(
                ErrorCode.WORK_ORDER_TEAM_MISMATCH,
                "Work order belongs to a different team than the incident",
                {**details, "work_order_id": str(work_order.id), "work_order_team_id": str(work_order.team_id)},
            )

        if target in MANAGED_TARGETS:
            manager = await self.repo.get_user(team.manager_id) if team.manager_id else None
            if manager is None or not manager.is_active or manager.role not in ASSIGNING_ROLES:
                return AssignmentError(
                    ErrorCode.TEAM_MANAGER_INVALID,
                    f"Team '{team.name}' has no active manager",
                    {**details, "manager_id": str(team.manager_id) if team.manager_id else None},
                )

        if target == IncidentStatus.COMPLETED:
            assigned_at = as_utc(incident.assigned_at)
            if assigned_at is None or now - assigned_at < self.completion_min_dwell:
                elapsed = (now - assigned_at).total_seconds() if assigned_at else 0
                return AssignmentError(
                    ErrorCode.COMPLETION_TOO_EARLY,
                    f"Incident can be completed {int(self.completion_min_dwell.total_seconds() // 60)} minutes after assignment",
                    {**details, "elapsed_seconds": int(elapsed), "required_seconds": int(self.completion_min_dwell.total_seconds())},
                )

        return ValidatedTeam(team=team, work_order=work_order, members=members)
