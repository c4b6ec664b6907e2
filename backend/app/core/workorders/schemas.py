import uuid
from datetime import datetime
from typing import Literal
from pydantic import BaseModel


class WorkOrderRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    incident_id: uuid.UUID
    team_id: uuid.UUID
    category: str
    status: str
    assigned_at: datetime
    started_at: datetime | None
    completed_at: datetime | None


class WorkerProgressRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    work_order_id: uuid.UUID
    worker_id: uuid.UUID
    status: str
    started_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime


class WorkerProgressUpdate(BaseModel):
    status: Literal["pending", "working", "done"]
