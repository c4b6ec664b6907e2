from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit.schemas import AuditLogRead
from app.core.audit.service import list_audit
from app.dependencies import get_db, require_roles, CurrentUser

router = APIRouter(tags=["audit"])


@router.get("/audit", response_model=list[AuditLogRead])
async def get_audit_log(
    table_name: str | None = None,
    reference_id: str | None = None,
    action: str | None = None,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_roles("admin", "manager")),
):
    return await list_audit(db, table_name=table_name, reference_id=reference_id, action=action, limit=min(limit, 500))
