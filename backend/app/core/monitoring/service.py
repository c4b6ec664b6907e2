"""
Read-only dispatch figures: SLA compliance, team health, capacity use and
overdue incidents. Nothing here writes or locks rows.
"""
import uuid
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.assignment.rules import AssignmentRules
from app.core.incidents.lifecycle import ASSIGNED_STATUSES, IncidentStatus
from app.core.incidents.models import Incident
from app.core.monitoring.schemas import (
    AssignmentAnalytics, SystemSummary, TeamHealth, TeamMonitoring, TeamSlaCompliance,
)
from app.core.teams import service as team_service
from app.core.teams.models import Team
from app.core.workorders.lifecycle import WorkOrderStatus
from app.core.workorders.models import WorkOrder
from app.db.base import as_utc, utcnow

SLA_WINDOW_DAYS = 30
HEALTH_WINDOW_DAYS = 7
HEALTHY_COMPLETION_RATE = 80
HEALTHY_COMPLETION_HOURS = 24

OPEN_STATUSES = (IncidentStatus.ASSIGNED.value, IncidentStatus.IN_PROGRESS.value)


def _hours(delta: timedelta) -> float:
    return delta.total_seconds() / 3600


def _percent(part: float, whole: float) -> int:
    return round(part / whole * 100) if whole else 0


def _overdue(now: datetime):
    return (
        Incident.status.in_(OPEN_STATUSES),
        Incident.sla_due_at.is_not(None),
        Incident.sla_due_at < now,
        Incident.is_deleted == False,
    )


def _sla_for(rules: AssignmentRules, category: str) -> timedelta:
    try:
        return rules.category(category).sla
    except KeyError:
        return rules.category(rules.default_category).sla


Job = tuple[WorkOrder, datetime | None]


async def _jobs_since(db: AsyncSession, team_ids: list[uuid.UUID], since: datetime) -> dict[uuid.UUID, list[Job]]:
    """Non-cancelled work orders assigned at or after ``since`` with their incident's SLA deadline, grouped by team."""
    grouped: dict[uuid.UUID, list[Job]] = {team_id: [] for team_id in team_ids}
    if not team_ids:
        return grouped
    result = await db.execute(
        select(WorkOrder, Incident.sla_due_at)
        .join(Incident, Incident.id == WorkOrder.incident_id)
        .where(
            WorkOrder.team_id.in_(team_ids),
            WorkOrder.assigned_at >= since,
            WorkOrder.status != WorkOrderStatus.CANCELLED.value,
        )
        .order_by(WorkOrder.assigned_at)
    )
    for work_order, sla_due_at in result.all():
        grouped[work_order.team_id].append((work_order, sla_due_at))
    return grouped


def sla_compliance(team_id: uuid.UUID, jobs: list[Job], rules: AssignmentRules, now: datetime) -> TeamSlaCompliance:
    """
    A job is compliant when it was completed, or is still open at ``now``,
    no later than the incident's ``sla_due_at``. Jobs without a stored
    deadline use their category's SLA from the assignment time.
    """
    compliant = 0
    total_response = timedelta()
    for work_order, sla_due_at in jobs:
        assigned_at = as_utc(work_order.assigned_at)
        finished = as_utc(work_order.completed_at) or now
        deadline = as_utc(sla_due_at) or assigned_at + _sla_for(rules, work_order.category)
        if finished <= deadline:
            compliant += 1
        total_response += finished - assigned_at
    total = len(jobs)
    return TeamSlaCompliance(
        team_id=team_id,
        window_days=SLA_WINDOW_DAYS,
        total_incidents=total,
        sla_compliant_incidents=compliant,
        compliance_rate=_percent(compliant, total),
        average_response_hours=round(_hours(total_response) / total, 2) if total else 0.0,
    )


def team_health(team_id: uuid.UUID, work_orders: list[WorkOrder]) -> TeamHealth:
    done = [
        wo for wo in work_orders
        if wo.status == WorkOrderStatus.COMPLETED.value and wo.completed_at is not None
    ]
    total = len(work_orders)
    rate = len(done) / total * 100 if total else 0.0
    average = (
        _hours(sum((as_utc(wo.completed_at) - as_utc(wo.assigned_at) for wo in done), timedelta())) / len(done)
        if done else 0.0
    )
    return TeamHealth(
        team_id=team_id,
        window_days=HEALTH_WINDOW_DAYS,
        total_jobs=total,
        completed_jobs=len(done),
        completion_rate=round(rate),
        average_completion_hours=round(average, 2),
        is_healthy=rate >= HEALTHY_COMPLETION_RATE and average <= HEALTHY_COMPLETION_HOURS,
    )


async def get_team_sla(
    db: AsyncSession, team: Team, rules: AssignmentRules, now: datetime | None = None,
) -> TeamSlaCompliance:
    now = now or utcnow()
    jobs = await _jobs_since(db, [team.id], now - timedelta(days=SLA_WINDOW_DAYS))
    return sla_compliance(team.id, jobs[team.id], rules, now)


async def get_team_health(db: AsyncSession, team: Team, now: datetime | None = None) -> TeamHealth:
    now = now or utcnow()
    jobs = await _jobs_since(db, [team.id], now - timedelta(days=HEALTH_WINDOW_DAYS))
    return team_health(team.id, [work_order for work_order, _ in jobs[team.id]])


async def job_distribution(db: AsyncSession, team_ids: list[uuid.UUID]) -> dict[uuid.UUID, dict[str, int]]:
    """Incidents each team holds or has finished, counted per status."""
    empty = {status.value: 0 for status in ASSIGNED_STATUSES}
    distribution = {team_id: {**empty, "total": 0} for team_id in team_ids}
    if not team_ids:
        return distribution
    result = await db.execute(
        select(Incident.assigned_team_id, Incident.status, func.count(Incident.id))
        .where(
            Incident.assigned_team_id.in_(team_ids),
            Incident.status.in_([status.value for status in ASSIGNED_STATUSES]),
            Incident.is_deleted == False,
        )
        .group_by(Incident.assigned_team_id, Incident.status)
    )
    for team_id, status, count in result.all():
        distribution[team_id][status] = count
        distribution[team_id]["total"] += count
    return distribution


async def assignment_analytics(
    db: AsyncSession, teams: list[Team], rules: AssignmentRules, now: datetime | None = None,
) -> AssignmentAnalytics:
    now = now or utcnow()
    team_ids = [t.id for t in teams]
    members = await team_service.count_active_members(db, team_ids)
    distribution = await job_distribution(db, team_ids)
    jobs = await _jobs_since(db, team_ids, now - timedelta(days=SLA_WINDOW_DAYS))
    health_since = now - timedelta(days=HEALTH_WINDOW_DAYS)

    entries = []
    for team in teams:
        recent = [wo for wo, _ in jobs[team.id] if as_utc(wo.assigned_at) >= health_since]
        entries.append(TeamMonitoring(
            team_id=team.id,
            team_name=team.name,
            is_available=team.is_available,
            available_from=team.available_from,
            last_activity=team.last_activity,
            current_capacity=team.current_capacity,
            max_capacity=team.max_capacity,
            available_slots=team.free_slots,
            utilization=team.current_capacity / team.max_capacity if team.max_capacity > 0 else 0.0,
            member_count=members.get(team.id, 0),
            job_distribution=distribution[team.id],
            health=team_health(team.id, recent),
            sla=sla_compliance(team.id, jobs[team.id], rules, now),
        ))

    return AssignmentAnalytics(
        total_teams=len(entries),
        available_teams=sum(1 for t in teams if t.is_available),
        average_utilization=_percent(sum(e.utilization for e in entries), len(entries)),
        teams=entries,
        generated_at=now,
    )


async def list_overdue_incidents(
    db: AsyncSession,
    now: datetime | None = None,
    team_ids: list[uuid.UUID] | None = None,
    limit: int = 200,
) -> list[Incident]:
    """Open incidents whose SLA deadline has passed, most overdue first."""
    stmt = select(Incident).where(*_overdue(now or utcnow()))
    if team_ids is not None:
        stmt = stmt.where(Incident.assigned_team_id.in_(team_ids))
    result = await db.execute(stmt.order_by(Incident.sla_due_at.asc()).limit(limit))
    return list(result.scalars().all())


async def system_summary(db: AsyncSession, now: datetime | None = None) -> SystemSummary:
    now = now or utcnow()
    teams = await team_service.list_teams(db)
    overdue = await db.execute(select(func.count(Incident.id)).where(*_overdue(now)))
    used = sum(t.current_capacity for t in teams)
    total = sum(t.max_capacity for t in teams)
    return SystemSummary(
        total_teams=len(teams),
        available_teams=sum(1 for t in teams if t.is_available),
        over_capacity_teams=sum(1 for t in teams if t.current_capacity >= t.max_capacity),
        total_active_jobs=used,
        total_capacity=total,
        average_utilization=_percent(used, total),
        overdue_incidents=overdue.scalar_one(),
        generated_at=now,
    )
