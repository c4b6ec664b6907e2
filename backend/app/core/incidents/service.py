import uuid
from datetime import datetime, timezone
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.incidents.lifecycle import IncidentStatus
from app.core.incidents.models import Incident
from app.core.incidents.schemas import IncidentReport
from app.core.notifications.publisher import NEW_INCIDENT, NotificationEvent, NotificationPublisher
from app.core.rbac.models import UserRole


async def generate_tracking_no(db: AsyncSession) -> str:
    yy = str(datetime.now(timezone.utc).year)[-2:]
    prefix = f"INC-{yy}-"
    result = await db.execute(select(func.count(Incident.id)).where(Incident.tracking_no.like(f"{prefix}%")))
    count = result.scalar_one() or 0
    return f"{prefix}{count + 1:04d}"


async def report_incident(
    db: AsyncSession,
    data: IncidentReport,
    notifier: NotificationPublisher,
) -> tuple[Incident, list[NotificationEvent]]:
    incident = Incident(
        tracking_no=await generate_tracking_no(db),
        status=IncidentStatus.NOT_STARTED.value,
        **data.model_dump(),
    )
    db.add(incident)
    await db.flush()
    from app.core.audit.service import audit
    await audit(
        db,
        actor_id=None,
        action="incident.report",
        table_name="incidents",
        reference_id=incident.id,
        details={"tracking_no": incident.tracking_no, "location": incident.location},
    )
    events = await notifier.stage(
        db,
        event=NEW_INCIDENT,
        title="New Incident Reported",
        message=f"{incident.tracking_no}: {incident.title}",
        related_id=incident.id,
        role=UserRole.MANAGER.value,
    )
    await db.refresh(incident)
    return incident, events


async def get_incident(db: AsyncSession, incident_id: uuid.UUID, *, for_update: bool = False) -> Incident | None:
    stmt = select(Incident).where(Incident.id == incident_id, Incident.is_deleted == False)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_by_tracking_no(db: AsyncSession, tracking_no: str) -> Incident | None:
    result = await db.execute(
        select(Incident).where(Incident.tracking_no == tracking_no.upper(), Incident.is_deleted == False)
    )
    return result.scalar_one_or_none()


async def list_incidents(
    db: AsyncSession,
    status: str | None = None,
    team_ids: list[uuid.UUID] | None = None,
    limit: int = 200,
) -> list[Incident]:
    stmt = select(Incident).where(Incident.is_deleted == False)
    if status:
        stmt = stmt.where(Incident.status == status)
    if team_ids is not None:
        stmt = stmt.where(Incident.assigned_team_id.in_(team_ids))
    result = await db.execute(stmt.order_by(Incident.created_at.desc()).limit(limit))
    return list(result.scalars().all())
