import uuid
from datetime import datetime
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, JSONType, SoftDeleteMixin, TimestampMixin, UUIDPrimaryKeyMixin


class Team(Base, UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    """
    Field crew owned by one manager.

    0 <= current_capacity <= max_capacity. current_capacity counts the team's
    active work orders and only changes in the same transaction as the work
    order it accounts for. Every UPDATE bumps ``version`` and fails on a stale read.
    """
    __tablename__ = "teams"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    manager_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    current_capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    priority_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_activity: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    available_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Selection hints: geographic zone and explicit capability tags
    zone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    capabilities: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    members: Mapped[list["TeamMember"]] = relationship(back_populates="team", lazy="raise", passive_deletes=True)

    __mapper_args__ = {"version_id_col": version}

    @property
    def free_slots(self) -> int:
        return max(self.max_capacity - self.current_capacity, 0)


class TeamMember(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "team_members"

    team_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    team: Mapped["Team"] = relationship(back_populates="members")

    __table_args__ = (UniqueConstraint("team_id", "user_id", name="uq_team_member"),)
