import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field

from app.core.incidents.lifecycle import IncidentStatus


class IncidentReport(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    location: str | None = Field(None, max_length=500)
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)
    contact_name: str | None = Field(None, max_length=200)
    contact_phone: str | None = Field(None, max_length=50)
    contact_email: EmailStr | None = None


class IncidentTracking(BaseModel):
    model_config = {"from_attributes": True}
    tracking_no: str
    title: str
    status: str
    created_at: datetime
    updated_at: datetime


class IncidentRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    tracking_no: str
    title: str
    description: str | None
    location: str | None
    latitude: float | None
    longitude: float | None
    contact_name: str | None
    contact_phone: str | None
    contact_email: str | None
    status: str
    priority: str | None
    category_reasoning: str | None
    assigned_team_id: uuid.UUID | None
    assigned_at: datetime | None
    sla_due_at: datetime | None
    created_at: datetime
    updated_at: datetime


class TransitionRequest(BaseModel):
    status: IncidentStatus
    reason: str | None = Field(None, max_length=1000)


class AssignRequest(BaseModel):
    team_id: uuid.UUID | None = None
    force_assign: bool = False
    dry_run: bool = False


class RevertRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class LegalTransitions(BaseModel):
    status: str
    allowed: list[str]
    revertible: bool


class ScoredTeamRead(BaseModel):
    team_id: uuid.UUID
    team_name: str
    final_score: float
    rule_bonus: float
    geographic_match: bool
    time_match: bool
    capability_match: bool


class AssignmentOutcomeRead(BaseModel):
    incident_id: uuid.UUID
    team_id: uuid.UUID
    team_name: str
    work_order_id: uuid.UUID | None
    category: Literal["critical", "high", "medium", "low"]
    category_reasoning: str
    sla_due_at: datetime
    dry_run: bool
    score: ScoredTeamRead
