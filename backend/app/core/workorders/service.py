import uuid
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.notifications.publisher import STATUS_UPDATE, NotificationEvent, NotificationPublisher
from app.core.rbac.models import ASSIGNING_ROLES, User, UserRole
from app.core.workorders.models import WorkOrder, WorkerProgress
from app.db.base import utcnow

PROGRESS_TRANSITIONS = {
    "pending": ["working", "done"],
    "working": ["done"],
    "done": [],
}


async def get_work_order(db: AsyncSession, work_order_id: uuid.UUID) -> WorkOrder | None:
    result = await db.execute(select(WorkOrder).where(WorkOrder.id == work_order_id))
    return result.scalar_one_or_none()


async def get_work_order_for_incident(db: AsyncSession, incident_id: uuid.UUID) -> WorkOrder | None:
    result = await db.execute(select(WorkOrder).where(WorkOrder.incident_id == incident_id))
    return result.scalar_one_or_none()


async def list_progress(db: AsyncSession, work_order_id: uuid.UUID) -> list[WorkerProgress]:
    result = await db.execute(
        select(WorkerProgress).where(WorkerProgress.work_order_id == work_order_id).order_by(WorkerProgress.created_at)
    )
    return list(result.scalars().all())


async def list_progress_for_worker(db: AsyncSession, worker_id: uuid.UUID, include_done: bool = False) -> list[WorkerProgress]:
    stmt = select(WorkerProgress).where(WorkerProgress.worker_id == worker_id)
    if not include_done:
        stmt = stmt.where(WorkerProgress.status != "done")
    result = await db.execute(stmt.order_by(WorkerProgress.created_at.desc()))
    return list(result.scalars().all())


async def get_progress_locked(db: AsyncSession, progress_id: uuid.UUID) -> WorkerProgress | None:
    """Row-level lock for state transitions."""
    result = await db.execute(select(WorkerProgress).where(WorkerProgress.id == progress_id).with_for_update())
    return result.scalar_one_or_none()


async def can_update_progress(db: AsyncSession, progress: WorkerProgress, actor: User) -> bool:
    if actor.role in ASSIGNING_ROLES or progress.worker_id == actor.id:
        return True
    if actor.role != UserRole.TEAM_LEADER.value:
        return False
    from app.core.teams.models import TeamMember
    work_order = await get_work_order(db, progress.work_order_id)
    if work_order is None:
        return False
    result = await db.execute(
        select(TeamMember).where(TeamMember.team_id == work_order.team_id, TeamMember.user_id == actor.id)
    )
    return result.scalar_one_or_none() is not None


async def update_progress(
    db: AsyncSession,
    progress: WorkerProgress,
    status: str,
    actor: User,
    notifier: NotificationPublisher,
) -> tuple[WorkerProgress, list[NotificationEvent]]:
    from fastapi import HTTPException
    if progress.status == status:
        return progress, []
    if status not in PROGRESS_TRANSITIONS.get(progress.status, []):
        raise HTTPException(400, f"Cannot move progress from '{progress.status}' to '{status}'")
    work_order = await get_work_order(db, progress.work_order_id)
    if work_order is None or not work_order.is_active:
        raise HTTPException(400, "Work order is no longer active")

    before = progress.status
    now = utcnow()
    progress.status = status
    if status == "working":
        progress.started_at = now
    if status == "done":
        progress.started_at = progress.started_at or now
        progress.completed_at = now
    await db.flush()

    from app.core.audit.service import audit
    await audit(
        db,
        actor_id=actor.id,
        action="worker_progress.update",
        table_name="worker_progress",
        reference_id=progress.id,
        details={"work_order_id": work_order.id, "from": before, "to": status},
    )

    events: list[NotificationEvent] = []
    if actor.id != progress.worker_id:
        events += await notifier.stage(
            db,
            event=STATUS_UPDATE,
            title="Progress Updated",
            message=f"Your progress on the job was set to {status}",
            related_id=work_order.incident_id,
            user_ids=[progress.worker_id],
        )
    if status == "done":
        events += await notifier.stage(
            db,
            event=STATUS_UPDATE,
            title="Worker Finished",
            message=f"A worker finished their part of the job for incident {work_order.incident_id}",
            related_id=work_order.incident_id,
            role=UserRole.MANAGER.value,
        )
    await db.refresh(progress)
    return progress, events
