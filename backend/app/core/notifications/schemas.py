import uuid
from datetime import datetime
from pydantic import BaseModel


class NotificationRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    user_id: uuid.UUID | None
    role: str | None
    event: str
    type: str
    title: str
    message: str
    related_type: str | None
    related_id: uuid.UUID | None
    is_read: bool
    created_at: datetime
