import asyncio
import os

from sqlalchemy import select

from app.core.auth.security import create_access_token
from app.core.rbac.models import User
from app.core.teams.models import Team, TeamMember
from app.db.init_db import create_all
from app.db.session import create_engine, create_session_factory, get_session
from app.settings import get_settings

TEAMS = [
    # name, zone, max_capacity, priority_level
    ("North Team Emergency", "north_zone", 4, 5),
    ("South Team Maintenance", "south_zone", 6, 3),
    ("Central Team Heavy Equipment", "central_zone", 3, 4),
]


async def _get_or_create_user(db, email: str, full_name: str, role: str) -> User:
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user:
        print(f"exists  user {email}")
        return user
    user = User(email=email, full_name=full_name, role=role)
    db.add(user)
    await db.flush()
    print(f"created user {email} ({role})")
    return user


async def seed() -> None:
    settings = get_settings()
    engine = create_engine(settings)
    await create_all(engine)
    session_factory = create_session_factory(engine)

    admin_email = os.getenv("SEED_ADMIN_EMAIL", "admin@sewerops.local")
    manager_email = os.getenv("SEED_MANAGER_EMAIL", "manager@sewerops.local")

    async with get_session(session_factory) as db:
        admin = await _get_or_create_user(db, admin_email, "Operations Admin", "admin")
        manager = await _get_or_create_user(db, manager_email, "Dispatch Manager", "manager")

        for index, (name, zone, max_capacity, priority_level) in enumerate(TEAMS, start=1):
            result = await db.execute(select(Team).where(Team.name == name))
            team = result.scalar_one_or_none()
            if team:
                print(f"exists  team {name}")
                continue
            team = Team(
                name=name,
                manager_id=manager.id,
                zone=zone,
                max_capacity=max_capacity,
                priority_level=priority_level,
            )
            db.add(team)
            await db.flush()
            leader = await _get_or_create_user(db, f"leader{index}@sewerops.local", f"Leader {index}", "team_leader")
            worker = await _get_or_create_user(db, f"worker{index}@sewerops.local", f"Worker {index}", "worker")
            db.add_all([TeamMember(team_id=team.id, user_id=leader.id), TeamMember(team_id=team.id, user_id=worker.id)])
            await db.flush()
            print(f"created team {name}")

    print(f"admin token:   {create_access_token(admin.id, expires_minutes=24 * 60)}")
    print(f"manager token: {create_access_token(manager.id, expires_minutes=24 * 60)}")
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
