import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit.models import AuditLog


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value
    return value


async def audit(
    db: AsyncSession,
    *,
    actor_id: uuid.UUID | None,
    action: str,
    table_name: str,
    reference_id: uuid.UUID | str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditLog:
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        table_name=table_name,
        reference_id=str(reference_id) if reference_id is not None else None,
        details=_jsonable(details) if details is not None else None,
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    await db.flush()
    return entry


async def list_audit(
    db: AsyncSession,
    *,
    table_name: str | None = None,
    reference_id: uuid.UUID | str | None = None,
    action: str | None = None,
    limit: int = 100,
) -> list[AuditLog]:
    stmt = select(AuditLog)
    if table_name:
        stmt = stmt.where(AuditLog.table_name == table_name)
    if reference_id is not None:
        stmt = stmt.where(AuditLog.reference_id == str(reference_id))
    if action:
        stmt = stmt.where(AuditLog.action == action)
    result = await db.execute(stmt.order_by(AuditLog.created_at.desc()).limit(limit))
    return list(result.scalars().all())
