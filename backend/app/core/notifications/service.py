import uuid
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.notifications.models import Notification
from app.core.rbac.models import User


async def list_for_user(db: AsyncSession, user: User, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    stmt = select(Notification).where(or_(Notification.user_id == user.id, Notification.role == user.role))
    if unread_only:
        stmt = stmt.where(Notification.is_read == False)
    result = await db.execute(stmt.order_by(Notification.created_at.desc()).limit(limit))
    return list(result.scalars().all())


async def get_for_user(db: AsyncSession, notification_id: uuid.UUID, user: User) -> Notification | None:
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            or_(Notification.user_id == user.id, Notification.role == user.role),
        )
    )
    return result.scalar_one_or_none()


async def mark_read(db: AsyncSession, notification: Notification) -> Notification:
    notification.is_read = True
    await db.flush()
    await db.refresh(notification)
    return notification
