import uuid
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit.service import audit
from app.core.rbac.models import User, UserRole
from app.core.teams.models import Team, TeamMember
from app.core.teams.schemas import ReconcileReport, TeamAvailabilityUpdate, TeamCreate
from app.db.base import as_utc, utcnow
from app.utils.logging import get_logger

logger = get_logger(__name__)


async def create_team(db: AsyncSession, data: TeamCreate, created_by: uuid.UUID | None) -> Team:
    team = Team(**data.model_dump(), last_activity=utcnow())
    db.add(team)
    await db.flush()
    await audit(
        db,
        actor_id=created_by,
        action="team.create",
        table_name="teams",
        reference_id=team.id,
        details=data.model_dump(),
    )
    await db.refresh(team)
    return team


async def get_team(db: AsyncSession, team_id: uuid.UUID, *, for_update: bool = False) -> Team | None:
    stmt = select(Team).where(Team.id == team_id, Team.is_deleted == False)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_teams(db: AsyncSession, manager_id: uuid.UUID | None = None) -> list[Team]:
    stmt = select(Team).where(Team.is_deleted == False)
    if manager_id is not None:
        stmt = stmt.where(Team.manager_id == manager_id)
    result = await db.execute(stmt.order_by(Team.name))
    return list(result.scalars().all())


# ── Members ──────────────────────────────────────────────────────────────────

async def list_active_members(db: AsyncSession, team_id: uuid.UUID) -> list[User]:
    result = await db.execute(
        select(User)
        .join(TeamMember, TeamMember.user_id == User.id)
        .where(
            TeamMember.team_id == team_id,
            User.status == "active",
            User.is_deleted == False,
        )
        .order_by(TeamMember.created_at)
    )
    return list(result.scalars().all())


async def count_active_members(db: AsyncSession, team_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
    if not team_ids:
        return {}
    result = await db.execute(
        select(TeamMember.team_id, func.count(TeamMember.id))
        .join(User, TeamMember.user_id == User.id)
        .where(
            TeamMember.team_id.in_(team_ids),
            User.status == "active",
            User.is_deleted == False,
        )
        .group_by(TeamMember.team_id)
    )
    counts = {team_id: 0 for team_id in team_ids}
    counts.update({team_id: count for team_id, count in result.all()})
    return counts


async def team_ids_for_user(db: AsyncSession, user_id: uuid.UUID) -> list[uuid.UUID]:
    result = await db.execute(select(TeamMember.team_id).where(TeamMember.user_id == user_id))
    return list(result.scalars().all())


def pick_leader(members: list[User]) -> User | None:
    """The member holding the team_leader role, else the longest-standing member."""
    for member in members:
        if member.role == UserRole.TEAM_LEADER.value:
            return member
    return members[0] if members else None


async def add_member(db: AsyncSession, team: Team, user: User, added_by: uuid.UUID | None) -> TeamMember:
    from fastapi import HTTPException
    if user.role not in (UserRole.TEAM_LEADER.value, UserRole.WORKER.value):
        raise HTTPException(400, "Only team leaders and workers can join a team")
    existing = await db.execute(
        select(TeamMember).where(TeamMember.team_id == team.id, TeamMember.user_id == user.id)
    )
    if existing.scalar_one_or_none():
        raise HTTPException(409, "User is already a member of this team")
    member = TeamMember(team_id=team.id, user_id=user.id)
    db.add(member)
    await db.flush()
    await audit(
        db,
        actor_id=added_by,
        action="team.member_add",
        table_name="team_members",
        reference_id=team.id,
        details={"user_id": user.id},
    )
    await db.refresh(member)
    return member


async def remove_member(db: AsyncSession, team: Team, user_id: uuid.UUID, removed_by: uuid.UUID | None) -> bool:
    result = await db.execute(
        select(TeamMember).where(TeamMember.team_id == team.id, TeamMember.user_id == user_id)
    )
    member = result.scalar_one_or_none()
    if not member:
        return False
    await db.delete(member)
    await db.flush()
    await audit(
        db,
        actor_id=removed_by,
        action="team.member_remove",
        table_name="team_members",
        reference_id=team.id,
        details={"user_id": user_id},
    )
    return True


# ── Availability ─────────────────────────────────────────────────────────────

async def update_availability(
    db: AsyncSession,
    team: Team,
    data: TeamAvailabilityUpdate,
    updated_by: uuid.UUID | None,
) -> Team:
    from fastapi import HTTPException
    changes = data.model_dump(exclude_none=True)
    if "max_capacity" in changes and changes["max_capacity"] < team.current_capacity:
        raise HTTPException(
            400,
            f"max_capacity {changes['max_capacity']} is below the {team.current_capacity} active work orders",
        )
    before = {field: getattr(team, field) for field in changes}
    for field, value in changes.items():
        setattr(team, field, value)
    if changes.get("is_available"):
        team.available_from = None
    team.last_activity = utcnow()
    await db.flush()
    await audit(
        db,
        actor_id=updated_by,
        action="team.availability_update",
        table_name="teams",
        reference_id=team.id,
        details={"before": before, "after": changes},
    )
    await db.refresh(team)
    return team


async def set_unavailable_for(
    db: AsyncSession,
    team: Team,
    duration_minutes: int,
    updated_by: uuid.UUID | None,
    reason: str | None = None,
    now: datetime | None = None,
) -> Team:
    from fastapi import HTTPException
    if not 5 <= duration_minutes <= 1440:
        raise HTTPException(400, "Duration must be between 5 and 1440 minutes")
    now = now or utcnow()
    team.is_available = False
    team.available_from = now + timedelta(minutes=duration_minutes)
    team.last_activity = now
    await db.flush()
    await audit(
        db,
        actor_id=updated_by,
        action="team.set_unavailable",
        table_name="teams",
        reference_id=team.id,
        details={"duration_minutes": duration_minutes, "available_from": team.available_from, "reason": reason},
    )
    await db.refresh(team)
    return team


async def adjust_capacity(db: AsyncSession, team: Team, delta: int, actor_id: uuid.UUID | None, reason: str) -> Team:
    """Move current_capacity by ``delta`` inside the caller's transaction, clamped to [0, max_capacity]."""
    before = team.current_capacity
    team.current_capacity = min(max(before + delta, 0), max(team.max_capacity, before))
    team.last_activity = utcnow()
    await db.flush()
    await audit(
        db,
        actor_id=actor_id,
        action="team.capacity_change",
        table_name="teams",
        reference_id=team.id,
        details={"before": before, "after": team.current_capacity, "reason": reason},
    )
    return team


async def reconcile_availability(db: AsyncSession, now: datetime | None = None) -> ReconcileReport:
    """
    Sweep teams with a scheduled return time and recount capacity.

    Teams whose available_from has passed come back online, teams with a future
    available_from are taken offline. current_capacity is recomputed from the
    team's active work orders.
    """
    from app.core.workorders.models import ACTIVE_WORK_ORDER_STATUSES, WorkOrder

    now = now or utcnow()
    report = ReconcileReport()

    result = await db.execute(select(Team).where(Team.is_deleted == False).with_for_update())
    teams = list(result.scalars().all())
    counts_result = await db.execute(
        select(WorkOrder.team_id, func.count(WorkOrder.id))
        .where(WorkOrder.status.in_(ACTIVE_WORK_ORDER_STATUSES))
        .group_by(WorkOrder.team_id)
    )
    active_counts = dict(counts_result.all())

    for team in teams:
        available_from = as_utc(team.available_from)
        if available_from is not None:
            if available_from <= now and not team.is_available:
                team.is_available = True
                team.available_from = None
                report.enabled.append(team.id)
            elif available_from > now and team.is_available:
                team.is_available = False
                report.disabled.append(team.id)

        actual = active_counts.get(team.id, 0)
        if team.current_capacity != actual:
            if actual > team.max_capacity:
                logger.error("team_over_capacity", team_id=str(team.id), active=actual, max_capacity=team.max_capacity)
            report.capacity_fixed[str(team.id)] = actual
            await audit(
                db,
                actor_id=None,
                action="team.capacity_recount",
                table_name="teams",
                reference_id=team.id,
                details={"before": team.current_capacity, "after": actual},
            )
            team.current_capacity = actual

    for team_id in report.enabled + report.disabled:
        await audit(
            db,
            actor_id=None,
            action="team.availability_sweep",
            table_name="teams",
            reference_id=team_id,
            details={"is_available": team_id in report.enabled, "at": now},
        )
    await db.flush()

    if report.enabled or report.disabled or report.capacity_fixed:
        logger.info(
            "team_reconcile",
            enabled=len(report.enabled),
            disabled=len(report.disabled),
            capacity_fixed=len(report.capacity_fixed),
        )
    return report
