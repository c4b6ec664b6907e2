import uuid
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import DomainError
from app.core.incidents import service
from app.core.incidents.lifecycle import REVERTIBLE_STATUSES, IncidentStatus, legal_targets
from app.core.incidents.schemas import (
    AssignmentOutcomeRead, AssignRequest, IncidentRead, IncidentReport, IncidentTracking,
    LegalTransitions, RevertRequest, TransitionRequest,
)
from app.core.teams.service import team_ids_for_user
from app.dependencies import get_db, get_current_user, get_services, require_roles, CurrentUser

public_router = APIRouter(prefix="/public", tags=["public"])
router = APIRouter(tags=["incidents"])


@public_router.post("/reports", response_model=IncidentTracking, status_code=201)
async def report_incident(
    data: IncidentReport,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    services=Depends(get_services),
):
    incident, events = await service.report_incident(db, data, services.notifier)
    background_tasks.add_task(services.notifier.publish, events)
    return incident


@public_router.get("/reports/{tracking_no}", response_model=IncidentTracking)
async def track_incident(tracking_no: str, db: AsyncSession = Depends(get_db)):
    incident = await service.get_by_tracking_no(db, tracking_no)
    if not incident:
        raise HTTPException(404, "Incident not found")
    return incident


@router.get("/incidents", response_model=list[IncidentRead])
async def list_incidents(
    status: IncidentStatus | None = None,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    team_ids = None
    if not current.principal.can_assign:
        team_ids = await team_ids_for_user(db, current.user_id)
    return await service.list_incidents(db, status.value if status else None, team_ids)


@router.get("/incidents/{incident_id}", response_model=IncidentRead)
async def get_incident(
    incident_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
):
    incident = await service.get_incident(db, incident_id)
    if not incident:
        raise HTTPException(404, "Incident not found")
    return incident


@router.get("/incidents/{incident_id}/transitions", response_model=LegalTransitions)
async def get_transitions(
    incident_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
):
    incident = await service.get_incident(db, incident_id)
    if not incident:
        raise HTTPException(404, "Incident not found")
    return LegalTransitions(
        status=incident.status,
        allowed=legal_targets(incident.status),
        revertible=incident.status in {s.value for s in REVERTIBLE_STATUSES},
    )


@router.post("/incidents/{incident_id}/verify", response_model=IncidentRead)
async def verify_incident(
    incident_id: uuid.UUID,
    current: CurrentUser = Depends(require_roles("manager", "admin")),
    services=Depends(get_services),
):
    result = await services.orchestrator.transition(incident_id, current.principal, IncidentStatus.VERIFIED)
    if isinstance(result, DomainError):
        raise result
    return result


@router.post("/incidents/{incident_id}/transition", response_model=IncidentRead)
async def transition_incident(
    incident_id: uuid.UUID,
    data: TransitionRequest,
    current: CurrentUser = Depends(get_current_user),
    services=Depends(get_services),
):
    result = await services.orchestrator.transition(incident_id, current.principal, data.status, data.reason)
    if isinstance(result, DomainError):
        raise result
    return result


@router.post("/incidents/{incident_id}/assign", response_model=AssignmentOutcomeRead)
async def assign_incident(
    incident_id: uuid.UUID,
    data: AssignRequest,
    current: CurrentUser = Depends(require_roles("manager", "admin")),
    services=Depends(get_services),
):
    result = await services.orchestrator.assign(
        incident_id,
        current.principal,
        force_assign=data.force_assign,
        dry_run=data.dry_run,
        team_id=data.team_id,
    )
    if isinstance(result, DomainError):
        raise result
    return result.as_dict()


@router.post("/incidents/{incident_id}/revert", response_model=IncidentRead)
async def revert_assignment(
    incident_id: uuid.UUID,
    data: RevertRequest,
    current: CurrentUser = Depends(require_roles("manager", "admin")),
    services=Depends(get_services),
):
    result = await services.orchestrator.revert(incident_id, current.principal, data.reason)
    if isinstance(result, DomainError):
        raise result
    return result
