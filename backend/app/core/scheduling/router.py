from dataclasses import asdict

from fastapi import APIRouter, Depends

from app.core.scheduling.config import SchedulerConfigUpdate
from app.dependencies import get_services, require_roles, CurrentUser

router = APIRouter(prefix="/scheduling", tags=["scheduling"])


@router.get("/status")
async def scheduler_status(
    services=Depends(get_services),
    _: CurrentUser = Depends(require_roles("admin", "manager")),
):
    return services.scheduler.status()


@router.post("/start")
async def start_scheduler(
    data: SchedulerConfigUpdate | None = None,
    services=Depends(get_services),
    _: CurrentUser = Depends(require_roles("admin")),
):
    partial = data.model_dump(exclude_none=True) if data else None
    return await services.scheduler.start(partial)


@router.post("/stop")
async def stop_scheduler(
    services=Depends(get_services),
    _: CurrentUser = Depends(require_roles("admin")),
):
    return await services.scheduler.stop()


@router.post("/trigger")
async def trigger_run(
    dry_run: bool | None = None,
    services=Depends(get_services),
    _: CurrentUser = Depends(require_roles("admin", "manager")),
):
    summary = await services.scheduler.trigger_manual_run(dry_run=dry_run)
    return asdict(summary)


@router.patch("/config")
async def update_config(
    data: SchedulerConfigUpdate,
    services=Depends(get_services),
    _: CurrentUser = Depends(require_roles("admin")),
):
    config = services.scheduler.update_config(data.model_dump(exclude_none=True))
    return config.model_dump()
