import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.assignment.selection import TeamCandidate
from app.core.incidents.lifecycle import IncidentStatus
from app.core.incidents.models import Incident
from app.core.rbac.models import User
from app.core.teams import service as team_service
from app.core.teams.models import Team
from app.core.workorders.models import ACTIVE_WORK_ORDER_STATUSES, WorkOrder, WorkerProgress


class AssignmentRepository:
    """Queries used by the validator, orchestrator and scheduler, bound to one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_incident(self, incident_id: uuid.UUID, *, for_update: bool = False) -> Incident | None:
        stmt = select(Incident).where(Incident.id == incident_id, Incident.is_deleted == False)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_team(self, team_id: uuid.UUID, *, for_update: bool = False) -> Team | None:
        return await team_service.get_team(self.session, team_id, for_update=for_update)

    async def get_user(self, user_id: uuid.UUID) -> User | None:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def active_members(self, team_id: uuid.UUID) -> list[User]:
        return await team_service.list_active_members(self.session, team_id)

    async def work_orders_for(self, incident_id: uuid.UUID) -> list[WorkOrder]:
        result = await self.session.execute(
            select(WorkOrder).where(
                WorkOrder.incident_id == incident_id,
                WorkOrder.status.in_(ACTIVE_WORK_ORDER_STATUSES),
            )
        )
        return list(result.scalars().all())

    async def any_work_order_for(self, incident_id: uuid.UUID) -> WorkOrder | None:
        result = await self.session.execute(select(WorkOrder).where(WorkOrder.incident_id == incident_id))
        return result.scalars().first()

    async def progress_for(self, work_order_id: uuid.UUID) -> list[WorkerProgress]:
        result = await self.session.execute(select(WorkerProgress).where(WorkerProgress.work_order_id == work_order_id))
        return list(result.scalars().all())

    async def teams_for_manager(self, manager: User) -> list[Team]:
        """Admins may dispatch to any team, managers only to their own."""
        return await team_service.list_teams(self.session, None if manager.role == "admin" else manager.id)

    async def category_load(self, team_ids: list[uuid.UUID], category: str) -> dict[uuid.UUID, int]:
        if not team_ids:
            return {}
        result = await self.session.execute(
            select(WorkOrder.team_id, func.count(WorkOrder.id))
            .where(
                WorkOrder.team_id.in_(team_ids),
                WorkOrder.category == category,
                WorkOrder.status.in_(ACTIVE_WORK_ORDER_STATUSES),
            )
            .group_by(WorkOrder.team_id)
        )
        loads = {team_id: 0 for team_id in team_ids}
        loads.update(dict(result.all()))
        return loads

    async def candidates(self, teams: list[Team], category: str) -> list[TeamCandidate]:
        team_ids = [t.id for t in teams]
        members = await team_service.count_active_members(self.session, team_ids)
        loads = await self.category_load(team_ids, category)
        return [
            TeamCandidate(
                team_id=t.id,
                name=t.name,
                manager_id=t.manager_id,
                is_available=t.is_available,
                current_capacity=t.current_capacity,
                max_capacity=t.max_capacity,
                priority_level=t.priority_level,
                active_members=members.get(t.id, 0),
                category_load=loads.get(t.id, 0),
                zone=t.zone,
                capabilities=tuple(t.capabilities or ()),
            )
            for t in teams
        ]

    async def unassigned_incidents(self, touched_before: datetime, limit: int = 500) -> list[Incident]:
        """Verified incidents with no team, oldest first, not modified since ``touched_before``."""
        result = await self.session.execute(
            select(Incident)
            .where(
                Incident.status == IncidentStatus.VERIFIED.value,
                Incident.assigned_team_id.is_(None),
                Incident.is_deleted == False,
                Incident.updated_at <= touched_before,
            )
            .order_by(Incident.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())
