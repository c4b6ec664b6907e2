"""Shared fixtures: a throwaway sqlite database per test and small record factories."""

import os
import random
from datetime import datetime, timedelta

# Force test config before any app imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret-key-for-the-test-suite-only"

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from app.core.assignment.orchestrator import AssignmentOrchestrator
from app.core.incidents.models import Incident
from app.core.notifications.publisher import NotificationPublisher
from app.core.rbac.models import User
from app.core.teams.models import Team, TeamMember
from app.db.base import utcnow
from app.db.init_db import create_all
from app.db.session import create_session_factory, get_session


class Clock:
    def __init__(self, start: datetime | None = None):
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class Factory:
    """Creates committed rows so the code under test sees them from its own sessions."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    async def user(self, role: str = "worker", status: str = "active", **kwargs) -> User:
        n = self._next()
        async with get_session(self.session_factory) as db:
            user = User(email=f"{role}{n}@test.local", full_name=f"{role.title()} {n}", role=role, status=status, **kwargs)
            db.add(user)
        return user

    async def team(
        self,
        manager: User | None,
        name: str | None = None,
        members: int = 2,
        leader: bool = True,
        **kwargs,
    ) -> Team:
        n = self._next()
        member_users = []
        for i in range(members):
            member_users.append(await self.user("team_leader" if leader and i == 0 else "worker"))
        async with get_session(self.session_factory) as db:
            team = Team(
                name=name or f"Crew {n}",
                manager_id=manager.id if manager else None,
                **{"max_capacity": 5, "priority_level": 3, **kwargs},
            )
            db.add(team)
            await db.flush()
            for member in member_users:
                db.add(TeamMember(team_id=team.id, user_id=member.id))
        return team

    async def incident(self, status: str = "verified", title: str = "Blocked drain", **kwargs) -> Incident:
        n = self._next()
        async with get_session(self.session_factory) as db:
            incident = Incident(tracking_no=f"INC-TEST-{n:04d}", title=title, status=status, **kwargs)
            db.add(incident)
        return incident

    async def reload(self, model, pk):
        async with self.session_factory() as db:
            return await db.get(model, pk)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def make(session_factory):
    return Factory(session_factory)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def published():
    return []


@pytest.fixture
def notifier(published):
    publisher = NotificationPublisher()

    async def collect(event):
        published.append(event)

    publisher.subscribe(collect)
    return publisher


@pytest.fixture
def orchestrator(session_factory, notifier, clock):
    return AssignmentOrchestrator(session_factory, notifier=notifier, rng=random.Random(7), clock=clock)
