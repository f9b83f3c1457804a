from __future__ import annotations

from typing import Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pgplane.errors import ValidationError
from pgplane.logger import get_logger
from pgplane.models.user import User
from pgplane.schemas.auth import UserCreate
from pgplane.security import ROLE_OWNER, Actor, ensure_permission, hash_password, verify_password
from pgplane.services.audit import ENTITY_USER, record_audit

_logger = get_logger("services.users")


async def get_user_by_username(session: AsyncSession, username: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


def actor_for(user: User) -> Actor:
    return Actor(user_id=user.id, username=user.username, role=user.role)


async def insert_user(
    session: AsyncSession,
    payload: UserCreate,
    *,
    created_by: Optional[str],
) -> User:
    """Create a user without a permission check; used by the admin CLI bootstrap."""
    normalized = payload.username.strip()
    if not normalized:
        raise ValidationError("Username must not be blank")
    if await get_user_by_username(session, normalized) is not None:
        raise ValidationError("Username already exists")

    user = User(
        id=str(uuid4()),
        username=normalized,
        password_hash=hash_password(payload.password),
        role=payload.role,
    )
    session.add(user)
    await record_audit(
        session,
        user_id=created_by,
        entity_type=ENTITY_USER,
        entity_id=user.id,
        action="CREATE",
        after_state={"username": user.username, "role": user.role},
    )
    await session.commit()
    await session.refresh(user)
    _logger.info("users.create", "Created user", username=user.username, role=user.role)
    return user


async def create_user(session: AsyncSession, actor: Actor, payload: UserCreate) -> User:
    ensure_permission(actor, ROLE_OWNER)
    return await insert_user(session, payload, created_by=actor.user_id)


async def authenticate(session: AsyncSession, username: str, password: str) -> Optional[User]:
    user = await get_user_by_username(session, username.strip())
    if user is None or not verify_password(password, user.password_hash):
        _logger.warning("auth.login.reject", "Rejected login attempt", username=username)
        return None
    _logger.info("auth.login.accept", "Accepted login", username=user.username)
    return user
