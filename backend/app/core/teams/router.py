import uuid
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.rbac.service import get_user
from app.core.teams import service
from app.core.teams.models import Team
from app.core.teams.schemas import (
    ReconcileReport, TeamAvailabilityUpdate, TeamCreate, TeamMemberAdd, TeamMemberRead,
    TeamRead, TeamUnavailableRequest,
)
from app.dependencies import get_db, get_current_user, require_roles, CurrentUser

router = APIRouter(prefix="/teams", tags=["teams"])


async def _managed_team(db: AsyncSession, team_id: uuid.UUID, current: CurrentUser) -> Team:
    team = await service.get_team(db, team_id, for_update=True)
    if not team:
        raise HTTPException(404, "Team not found")
    if current.user.role != "admin" and team.manager_id != current.user_id:
        raise HTTPException(403, "Team is managed by someone else")
    return team


@router.post("", response_model=TeamRead, status_code=201)
async def create_team(
    data: TeamCreate,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_roles("manager", "admin")),
):
    if data.manager_id is None:
        data = data.model_copy(update={"manager_id": current.user_id})
    elif current.user.role != "admin" and data.manager_id != current.user_id:
        raise HTTPException(403, "Managers can only create their own teams")
    return await service.create_team(db, data, current.user_id)


@router.get("", response_model=list[TeamRead])
async def list_teams(
    mine: bool = False,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    return await service.list_teams(db, current.user_id if mine else None)


@router.post("/reconcile", response_model=ReconcileReport)
async def reconcile(
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_roles("admin", "manager")),
):
    return await service.reconcile_availability(db)


@router.get("/{team_id}", response_model=TeamRead)
async def get_team(
    team_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
):
    team = await service.get_team(db, team_id)
    if not team:
        raise HTTPException(404, "Team not found")
    return team


@router.post("/{team_id}/members", response_model=TeamMemberRead, status_code=201)
async def add_member(
    team_id: uuid.UUID,
    data: TeamMemberAdd,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_roles("manager", "admin")),
):
    team = await _managed_team(db, team_id, current)
    user = await get_user(db, data.user_id)
    if not user:
        raise HTTPException(404, "User not found")
    return await service.add_member(db, team, user, current.user_id)


@router.delete("/{team_id}/members/{user_id}", status_code=204)
async def remove_member(
    team_id: uuid.UUID,
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_roles("manager", "admin")),
):
    team = await _managed_team(db, team_id, current)
    if not await service.remove_member(db, team, user_id, current.user_id):
        raise HTTPException(404, "Member not found")


@router.patch("/{team_id}/availability", response_model=TeamRead)
async def update_availability(
    team_id: uuid.UUID,
    data: TeamAvailabilityUpdate,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_roles("manager", "admin")),
):
    team = await _managed_team(db, team_id, current)
    return await service.update_availability(db, team, data, current.user_id)


@router.post("/{team_id}/unavailable", response_model=TeamRead)
async def set_unavailable(
    team_id: uuid.UUID,
    data: TeamUnavailableRequest,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(require_roles("manager", "admin")),
):
    team = await _managed_team(db, team_id, current)
    return await service.set_unavailable_for(db, team, data.duration_minutes, current.user_id, data.reason)
