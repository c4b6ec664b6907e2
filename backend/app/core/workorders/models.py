import uuid
from datetime import datetime
from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

ACTIVE_WORK_ORDER_STATUSES = ("not_started", "in_progress")


class WorkOrder(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    Job card binding one incident to one team.
    status flow: not_started -> in_progress -> completed, cancel from either active state.
    team_id always equals the incident's assigned_team_id.
    """
    __tablename__ = "work_orders"

    incident_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, unique=True)
    team_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    # Category at assignment time, used for the per-category team cap
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="not_started")
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    progress: Mapped[list["WorkerProgress"]] = relationship(back_populates="work_order", lazy="raise", passive_deletes=True)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_WORK_ORDER_STATUSES


class WorkerProgress(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "worker_progress"

    work_order_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    worker_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # pending | working | done
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    work_order: Mapped["WorkOrder"] = relationship(back_populates="progress")

    __table_args__ = (UniqueConstraint("work_order_id", "worker_id", name="uq_progress_worker"),)
