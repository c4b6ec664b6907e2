import uuid
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.incidents.schemas import IncidentRead
from app.core.monitoring import service
from app.core.monitoring.schemas import AssignmentAnalytics, SystemSummary, TeamHealth, TeamSlaCompliance
from app.core.teams.models import Team
from app.core.teams.service import get_team, list_teams
from app.dependencies import get_db, get_services, require_roles, CurrentUser

router = APIRouter(prefix="/monitoring", tags=["monitoring"])


async def _team_or_404(db: AsyncSession, team_id: uuid.UUID) -> Team:
    team = await get_team(db, team_id)
    if not team:
        raise HTTPException(404, "Team not found")
    return team


@router.get("/summary", response_model=SystemSummary)
async def get_summary(
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_roles("admin", "manager")),
):
    return await service.system_summary(db)


@router.get("/analytics", response_model=AssignmentAnalytics)
async def get_analytics(
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_roles("manager", "admin")),
    services=Depends(get_services),
):
    teams = await list_teams(db, None if current.user.role == "admin" else current.user_id)
    return await service.assignment_analytics(db, teams, services.rules)


@router.get("/overdue", response_model=list[IncidentRead])
async def get_overdue(
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_roles("manager", "admin")),
):
    team_ids = None
    if current.user.role != "admin":
        team_ids = [t.id for t in await list_teams(db, current.user_id)]
    return await service.list_overdue_incidents(db, team_ids=team_ids)


@router.get("/teams/{team_id}/sla", response_model=TeamSlaCompliance)
async def get_team_sla(
    team_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_roles("manager", "admin")),
    services=Depends(get_services),
):
    team = await _team_or_404(db, team_id)
    return await service.get_team_sla(db, team, services.rules)


@router.get("/teams/{team_id}/health", response_model=TeamHealth)
async def get_team_health(
    team_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_roles("manager", "admin")),
):
    team = await _team_or_404(db, team_id)
    return await service.get_team_health(db, team)
