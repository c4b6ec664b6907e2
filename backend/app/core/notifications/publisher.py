import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.notifications.models import Notification
from app.utils.logging import get_logger

logger = get_logger(__name__)

NEW_ASSIGNMENT = "new-assignment"
ASSIGNMENT_UPDATE = "assignment-update"
STATUS_UPDATE = "status-update"
NEW_INCIDENT = "new-incident"


@dataclass(frozen=True)
class NotificationEvent:
    event: str
    type: str
    title: str
    message: str
    related_type: str | None = None
    related_id: uuid.UUID | None = None
    user_id: uuid.UUID | None = None
    role: str | None = None

    def payload(self) -> dict:
        return {
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "related_type": self.related_type,
            "related_id": str(self.related_id) if self.related_id else None,
        }


Subscriber = Callable[[NotificationEvent], Awaitable[None]]


@dataclass
class NotificationPublisher:
    """
    Persists notifications inside the caller's transaction and hands them to
    in-process subscribers once the caller has committed.
    """
    subscribers: list[Subscriber] = field(default_factory=list)

    def subscribe(self, subscriber: Subscriber) -> None:
        self.subscribers.append(subscriber)

    async def stage(
        self,
        db: AsyncSession,
        *,
        event: str,
        title: str,
        message: str,
        type: str = "info",
        related_type: str | None = "incident",
        related_id: uuid.UUID | None = None,
        user_ids: list[uuid.UUID] | None = None,
        role: str | None = None,
    ) -> list[NotificationEvent]:
        staged: list[NotificationEvent] = []
        targets: list[tuple[uuid.UUID | None, str | None]] = [(user_id, None) for user_id in dict.fromkeys(user_ids or [])]
        if role:
            targets.append((None, role))
        for user_id, target_role in targets:
            db.add(Notification(
                user_id=user_id,
                role=target_role,
                event=event,
                type=type,
                title=title,
                message=message,
                related_type=related_type,
                related_id=related_id,
            ))
            staged.append(NotificationEvent(
                event=event,
                type=type,
                title=title,
                message=message,
                related_type=related_type,
                related_id=related_id,
                user_id=user_id,
                role=target_role,
            ))
        await db.flush()
        return staged

    async def publish(self, events: list[NotificationEvent]) -> None:
        for notification in events:
            for subscriber in list(self.subscribers):
                try:
                    await subscriber(notification)
                except Exception:
                    # Delivery is best effort, the row is already committed
                    logger.exception(
                        "notification_delivery_failed",
                        notification_event=notification.event,
                        user_id=str(notification.user_id) if notification.user_id else None,
                        role=notification.role,
                    )
