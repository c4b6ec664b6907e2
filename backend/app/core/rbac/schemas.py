import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field

RoleName = Literal["admin", "manager", "team_leader", "worker"]


class UserCreate(BaseModel):
    email: EmailStr
    full_name: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=50)
    role: RoleName = "worker"


class UserUpdate(BaseModel):
    full_name: str | None = None
    phone: str | None = None
    role: RoleName | None = None
    status: Literal["active", "blocked"] | None = None


class UserRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    email: str
    full_name: str | None
    phone: str | None
    role: str
    status: str
    created_at: datetime
