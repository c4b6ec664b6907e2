import asyncio

from sqlalchemy.ext.asyncio import AsyncEngine

from app.db.base import Base

# Imported for their side effect of registering tables on Base.metadata
from app.core.audit import models as _audit  # noqa: F401
from app.core.incidents import models as _incidents  # noqa: F401
from app.core.notifications import models as _notifications  # noqa: F401
from app.core.rbac import models as _rbac  # noqa: F401
from app.core.teams import models as _teams  # noqa: F401
from app.core.workorders import models as _workorders  # noqa: F401


async def create_all(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def main() -> None:
    from app.db.session import create_engine
    from app.settings import get_settings

    engine = create_engine(get_settings())
    await create_all(engine)
    await engine.dispose()
    print("Schema created.")


if __name__ == "__main__":
    asyncio.run(main())
