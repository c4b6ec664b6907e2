import uuid
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.rbac.models import User, UserRole
from app.core.rbac.schemas import UserCreate, UserUpdate


async def create_user(db: AsyncSession, data: UserCreate, created_by: uuid.UUID | None = None) -> User:
    user = User(email=data.email.lower(), full_name=data.full_name, phone=data.phone, role=data.role)
    db.add(user)
    await db.flush()
    from app.core.audit.service import audit
    await audit(
        db,
        actor_id=created_by,
        action="user.create",
        table_name="users",
        reference_id=user.id,
        details={"email": user.email, "role": user.role},
    )
    await db.refresh(user)
    return user


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id, User.is_deleted == False))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.lower(), User.is_deleted == False))
    return result.scalar_one_or_none()


async def list_users(db: AsyncSession, role: str | None = None) -> list[User]:
    stmt = select(User).where(User.is_deleted == False)
    if role:
        stmt = stmt.where(User.role == role)
    result = await db.execute(stmt.order_by(User.email))
    return list(result.scalars().all())


async def list_active_managers(db: AsyncSession) -> list[User]:
    result = await db.execute(
        select(User).where(
            User.role == UserRole.MANAGER.value,
            User.status == "active",
            User.is_deleted == False,
        ).order_by(User.created_at)
    )
    return list(result.scalars().all())


async def update_user(db: AsyncSession, user: User, data: UserUpdate, updated_by: uuid.UUID | None = None) -> User:
    changes = data.model_dump(exclude_none=True)
    before = {field: getattr(user, field) for field in changes}
    for field, value in changes.items():
        setattr(user, field, value)
    await db.flush()
    from app.core.audit.service import audit
    await audit(
        db,
        actor_id=updated_by,
        action="user.update",
        table_name="users",
        reference_id=user.id,
        details={"before": before, "after": changes},
    )
    await db.refresh(user)
    return user


async def delete_user(db: AsyncSession, user: User, deleted_by: uuid.UUID | None = None) -> None:
    user.is_deleted = True
    await db.flush()
    from app.core.audit.service import audit
    await audit(db, actor_id=deleted_by, action="user.delete", table_name="users", reference_id=user.id)
