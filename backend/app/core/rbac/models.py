import uuid
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin, SoftDeleteMixin, UUIDPrimaryKeyMixin


class UserRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    TEAM_LEADER = "team_leader"
    WORKER = "worker"


ASSIGNING_ROLES = frozenset({UserRole.ADMIN.value, UserRole.MANAGER.value})


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    """Staff account. Citizens reporting incidents have no account."""
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    role: Mapped[str] = mapped_column(String(30), nullable=False, default=UserRole.WORKER.value)
    # active | blocked
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    @property
    def is_active(self) -> bool:
        return not self.is_deleted and self.status == "active"


@dataclass(frozen=True)
class Principal:
    id: uuid.UUID
    role: str

    @property
    def can_assign(self) -> bool:
        return self.role in ASSIGNING_ROLES

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(id=user.id, role=user.role)
