import uuid
from datetime import datetime
from pydantic import BaseModel, Field


class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    manager_id: uuid.UUID | None = None
    max_capacity: int = Field(5, ge=0, le=20)
    priority_level: int = Field(1, ge=1, le=5)
    zone: str | None = Field(None, max_length=50)
    capabilities: list[str] | None = None


class TeamAvailabilityUpdate(BaseModel):
    is_available: bool | None = None
    max_capacity: int | None = Field(None, ge=0, le=20)
    priority_level: int | None = Field(None, ge=1, le=5)


class TeamUnavailableRequest(BaseModel):
    duration_minutes: int = Field(..., ge=5, le=1440)
    reason: str | None = Field(None, max_length=500)


class TeamMemberAdd(BaseModel):
    user_id: uuid.UUID


class TeamMemberRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    team_id: uuid.UUID
    user_id: uuid.UUID
    created_at: datetime


class TeamRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    name: str
    manager_id: uuid.UUID | None
    is_available: bool
    current_capacity: int
    max_capacity: int
    priority_level: int
    last_activity: datetime | None
    available_from: datetime | None
    zone: str | None
    capabilities: list[str] | None
    created_at: datetime


class ReconcileReport(BaseModel):
    enabled: list[uuid.UUID] = []
    disabled: list[uuid.UUID] = []
    capacity_fixed: dict[str, int] = {}
