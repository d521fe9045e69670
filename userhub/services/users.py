"""
User persistence helpers shared by the account and admin endpoints.

Uniqueness is checked up front so callers get a precise message, but the
unique indexes on ``users`` remain the real guard: a commit that loses a
race is translated to the same duplicate message as the pre-check.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from userhub.core.config import Settings
from userhub.core.exceptions import DuplicateError, ValidationError, duplicate_field
from userhub.core.security import PasswordHasher
from userhub.models.user import DEFAULT_ROLE, User

logger = logging.getLogger(__name__)

DUPLICATE_MESSAGES = {
    "email": "Email already registered",
    "username": "Username already taken",
}


def _duplicate(field: str) -> DuplicateError:
    message = DUPLICATE_MESSAGES[field]
    return DuplicateError(message, [{"field": field, "message": message}])


async def ensure_unique(
    db: AsyncSession,
    *,
    username: str | None = None,
    email: str | None = None,
    exclude_id: int | None = None,
) -> None:
    """Raise ``DuplicateError`` naming the field that is already in use."""
    conditions = []
    if username is not None:
        conditions.append(User.username == username)
    if email is not None:
        conditions.append(User.email == email)
    if not conditions:
        return

    stmt = select(User.username, User.email).where(or_(*conditions))
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    existing = (await db.execute(stmt.limit(1))).first()
    if existing is None:
        return
    if email is not None and existing.email == email:
        raise _duplicate("email")
    raise _duplicate("username")


async def resolve_team(
    db: AsyncSession,
    member_ids: Iterable[int],
    owner_id: int | None = None,
) -> list[User]:
    """Load team members by id, rejecting unknown ids and self-membership."""
    ids = list(dict.fromkeys(member_ids))
    if not ids:
        return []
    if owner_id is not None and owner_id in ids:
        raise ValidationError(
            errors=[{"field": "team", "message": "A user cannot be a member of their own team"}]
        )

    result = await db.execute(select(User).where(User.id.in_(ids)))
    members = list(result.scalars().all())
    missing = sorted(set(ids) - {m.id for m in members})
    if missing:
        raise ValidationError(
            errors=[
                {
                    "field": "team",
                    "message": f"Team member(s) not found: {', '.join(map(str, missing))}",
                }
            ]
        )
    return members


async def commit_or_conflict(db: AsyncSession) -> None:
    """Commit, mapping a unique-index violation to the duplicate message."""
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        field = duplicate_field(exc)
        if field in DUPLICATE_MESSAGES:
            logger.info("Lost uniqueness race on %s", field)
            raise _duplicate(field) from exc
        raise


async def create_user(
    db: AsyncSession,
    hasher: PasswordHasher,
    *,
    username: str,
    email: str,
    password: str,
    first_name: str | None = None,
    last_name: str | None = None,
    role: str = DEFAULT_ROLE,
    is_active: bool = True,
    team_ids: Iterable[int] = (),
) -> User:
    await ensure_unique(db, username=username, email=email)
    team = await resolve_team(db, team_ids)

    user = User(
        username=username,
        email=email,
        hashed_password=await hasher.hash_async(password),
        first_name=first_name,
        last_name=last_name,
        role=role,
        is_active=is_active,
        team=team,
    )
    db.add(user)
    await commit_or_conflict(db)
    logger.info("User created: %s (role=%s)", user.username, user.role)
    return user


async def ensure_first_admin(db: AsyncSession, config: Settings, hasher: PasswordHasher) -> bool:
    """Seed the configured admin account unless its email already exists."""
    email = config.FIRST_ADMIN_EMAIL.strip().lower()
    result = await db.execute(select(User.id).where(User.email == email))
    if result.first() is not None:
        return False

    await create_user(
        db,
        hasher,
        username=config.FIRST_ADMIN_USERNAME,
        email=email,
        password=config.FIRST_ADMIN_PASSWORD,
        first_name="System",
        last_name="Administrator",
        role="admin",
    )
    logger.info("Default admin created: %s (password: <redacted>)", email)
    return True


async def get_user(db: AsyncSession, user_id: int) -> User | None:
    """Load a user with its team, even if the session already holds it.

    Users reached only as someone's team member are in the identity map
    without their own team loaded; ``populate_existing`` reloads them.
    """
    result = await db.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
