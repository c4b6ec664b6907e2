import uuid
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.rbac import service
from app.core.rbac.schemas import UserCreate, UserUpdate, UserRead
from app.dependencies import get_db, get_current_user, require_roles, CurrentUser

router = APIRouter(tags=["users"])


@router.post("/users", response_model=UserRead, status_code=201)
async def create_user(data: UserCreate, db: AsyncSession = Depends(get_db), current: CurrentUser = Depends(require_roles("admin"))):
    if await service.get_user_by_email(db, data.email):
        raise HTTPException(409, "Email already registered")
    return await service.create_user(db, data, created_by=current.user_id)


@router.get("/users", response_model=list[UserRead])
async def list_users(role: str | None = None, db: AsyncSession = Depends(get_db), _: CurrentUser = Depends(require_roles("admin", "manager"))):
    return await service.list_users(db, role)


@router.get("/users/me", response_model=UserRead)
async def me(current: CurrentUser = Depends(get_current_user)):
    return current.user


@router.get("/users/{user_id}", response_model=UserRead)
async def get_user(user_id: uuid.UUID, db: AsyncSession = Depends(get_db), _: CurrentUser = Depends(require_roles("admin", "manager"))):
    user = await service.get_user(db, user_id)
    if not user:
        raise HTTPException(404, "User not found")
    return user


@router.patch("/users/{user_id}", response_model=UserRead)
async def update_user(user_id: uuid.UUID, data: UserUpdate, db: AsyncSession = Depends(get_db), current: CurrentUser = Depends(require_roles("admin"))):
    user = await service.get_user(db, user_id)
    if not user:
        raise HTTPException(404, "User not found")
    return await service.update_user(db, user, data, updated_by=current.user_id)


@router.delete("/users/{user_id}", status_code=204)
async def delete_user(user_id: uuid.UUID, db: AsyncSession = Depends(get_db), current: CurrentUser = Depends(require_roles("admin"))):
    user = await service.get_user(db, user_id)
    if not user:
        raise HTTPException(404, "User not found")
    await service.delete_user(db, user, deleted_by=current.user_id)
