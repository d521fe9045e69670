"""
Admin user endpoints — listing, creation, statistics and team lookup.

- Listing, creation and stats require the admin role.
- Team lookup is open to admins and managers.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from userhub.api.v1.deps import get_db, get_password_hasher, require_admin, require_manager
from userhub.core.exceptions import NotFound
from userhub.core.security import PasswordHasher
from userhub.models.user import User
from userhub.schemas.common import Envelope
from userhub.schemas.user import (
    Pagination,
    StatsData,
    TeamData,
    TeamMemberRead,
    UserCreate,
    UserData,
    UserListData,
    UserQuery,
    UserRead,
    UserStats,
)
from userhub.services.users import create_user, get_user

router = APIRouter(prefix="/user", tags=["users"])
logger = logging.getLogger(__name__)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _filters(query: UserQuery) -> list:
    conditions = []
    if query.role is not None:
        conditions.append(User.role == query.role)
    if query.is_active is not None:
        conditions.append(User.is_active == query.is_active)
    if query.search:
        pattern = f"%{_escape_like(query.search)}%"
        conditions.append(
            or_(
                User.username.ilike(pattern, escape="\\"),
                User.email.ilike(pattern, escape="\\"),
                User.first_name.ilike(pattern, escape="\\"),
                User.last_name.ilike(pattern, escape="\\"),
            )
        )
    return conditions


@router.get("", response_model=Envelope[UserListData])
async def list_users(
    query: Annotated[UserQuery, Query()],
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[UserListData]:
    """Paginated user listing with optional role / active filters and search."""
    conditions = _filters(query)

    total = (await db.execute(select(func.count(User.id)).where(*conditions))).scalar_one()
    result = await db.execute(
        select(User)
        .where(*conditions)
        .order_by(User.created_at.desc(), User.id.desc())
        .offset((query.page - 1) * query.limit)
        .limit(query.limit)
        .execution_options(populate_existing=True)
    )
    users = result.scalars().all()

    return Envelope(
        data=UserListData(
            users=[UserRead.model_validate(u) for u in users],
            pagination=Pagination.build(query.page, query.limit, total),
        )
    )


@router.post("", response_model=Envelope[UserData], status_code=status.HTTP_201_CREATED)
async def create_user_account(
    body: UserCreate,
    db: AsyncSession = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    admin: User = Depends(require_admin),
) -> Envelope[UserData]:
    """Create a user with an explicit role, activation state and team."""
    user = await create_user(
        db,
        hasher,
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=body.role,
        is_active=body.is_active,
        team_ids=body.team,
    )
    logger.info("Admin %s created user %s", admin.id, user.id)
    return Envelope(message="User created successfully", data=UserData(user=UserRead.model_validate(user)))


@router.get("/stats", response_model=Envelope[StatsData])
async def user_stats(
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[StatsData]:
    """Total, per-role and active user counts."""
    rows = await db.execute(select(User.role, func.count(User.id)).group_by(User.role))
    per_role = {role: count for role, count in rows.all()}
    active = (await db.execute(select(func.count(User.id)).where(User.is_active.is_(True)))).scalar_one()

    return Envelope(
        data=StatsData(
            stats=UserStats(
                total_users=sum(per_role.values()),
                total_admins=per_role.get("admin", 0),
                total_managers=per_role.get("manager", 0),
                total_regular_users=per_role.get("user", 0),
                total_active_users=active,
            )
        )
    )


@router.get("/team/{id}", response_model=Envelope[TeamData])
async def team_members(
    manager_id: Annotated[int, Path(alias="id", gt=0)],
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_manager),
) -> Envelope[TeamData]:
    """Direct reports of the given user."""
    manager = await get_user(db, manager_id)
    if manager is None:
        raise NotFound("User not found")

    return Envelope(
        data=TeamData(
            manager=TeamMemberRead.model_validate(manager),
            members=[TeamMemberRead.model_validate(m) for m in manager.team],
            team_size=manager.team_size,
        )
    )
