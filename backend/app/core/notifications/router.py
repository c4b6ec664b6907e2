import uuid
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.notifications import service
from app.core.notifications.schemas import NotificationRead
from app.dependencies import get_db, get_current_user, CurrentUser

router = APIRouter(tags=["notifications"])


@router.get("/notifications", response_model=list[NotificationRead])
async def list_notifications(
    unread_only: bool = False,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    return await service.list_for_user(db, current.user, unread_only=unread_only)


@router.post("/notifications/{notification_id}/read", response_model=NotificationRead)
async def mark_read(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    notification = await service.get_for_user(db, notification_id, current.user)
    if not notification:
        raise HTTPException(404, "Notification not found")
    return await service.mark_read(db, notification)
