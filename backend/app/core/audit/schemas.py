import uuid
from datetime import datetime
from pydantic import BaseModel


class AuditLogRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    actor_id: uuid.UUID | None
    action: str
    table_name: str
    reference_id: str | None
    details: dict | None
    created_at: datetime
