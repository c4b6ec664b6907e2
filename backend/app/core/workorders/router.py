import uuid
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.workorders import service
from app.core.workorders.schemas import WorkOrderRead, WorkerProgressRead, WorkerProgressUpdate
from app.dependencies import get_db, get_current_user, get_services, CurrentUser

router = APIRouter(tags=["work orders"])


@router.get("/incidents/{incident_id}/work-order", response_model=WorkOrderRead)
async def get_incident_work_order(
    incident_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
):
    work_order = await service.get_work_order_for_incident(db, incident_id)
    if not work_order:
        raise HTTPException(404, "Work order not found")
    return work_order


@router.get("/work-orders/{work_order_id}/progress", response_model=list[WorkerProgressRead])
async def list_progress(
    work_order_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
):
    if not await service.get_work_order(db, work_order_id):
        raise HTTPException(404, "Work order not found")
    return await service.list_progress(db, work_order_id)


@router.get("/progress/mine", response_model=list[WorkerProgressRead])
async def my_progress(
    include_done: bool = False,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    return await service.list_progress_for_worker(db, current.user_id, include_done)


@router.patch("/progress/{progress_id}", response_model=WorkerProgressRead)
async def update_progress(
    progress_id: uuid.UUID,
    data: WorkerProgressUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    services=Depends(get_services),
):
    progress = await service.get_progress_locked(db, progress_id)
    if not progress:
        raise HTTPException(404, "Progress record not found")
    if not await service.can_update_progress(db, progress, current.user):
        raise HTTPException(403, "Not allowed to update this progress record")
    progress, events = await service.update_progress(db, progress, data.status, current.user, services.notifier)
    if events:
        background_tasks.add_task(services.notifier.publish, events)
    return progress
