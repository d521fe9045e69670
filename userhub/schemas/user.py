"""Pydantic schemas for User registration, profile and admin CRUD."""

from __future__ import annotations

import math
import re
from datetime import datetime

from pydantic import Field, field_validator

from userhub.models.user import DEFAULT_ROLE, ROLES
from userhub.schemas.common import CamelModel, RequestModel
from userhub.schemas.token import TokenPair

_USERNAME_RE = re.compile(r"^[A-Za-z0-9]+$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_STRONG_PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


# ── Field rules ─────────────────────────────────────────────────────
def _check_username(v: str) -> str:
    v = v.strip()
    if len(v) < 3:
        raise ValueError("Username must be at least 3 characters long")
    if len(v) > 30:
        raise ValueError("Username cannot exceed 30 characters")
    if not _USERNAME_RE.match(v):
        raise ValueError("Username must contain only alphanumeric characters")
    return v


def _check_email(v: str) -> str:
    v = v.strip().lower()
    if len(v) > 320 or not _EMAIL_RE.match(v):
        raise ValueError("Please provide a valid email address")
    return v


def _check_password(v: str) -> str:
    if len(v) < 6:
        raise ValueError("Password must be at least 6 characters long")
    return v


def _check_strong_password(v: str) -> str:
    _check_password(v)
    if not _STRONG_PASSWORD_RE.match(v):
        raise ValueError(
            "Password must contain at least one lowercase letter, "
            "one uppercase letter, and one number"
        )
    return v


def _check_name(v: str | None, label: str) -> str | None:
    if v is None:
        return None
    v = v.strip()
    if len(v) > 50:
        raise ValueError(f"{label} cannot exceed 50 characters")
    return v or None


def _check_role(v: str | None) -> str | None:
    if v is not None and v not in ROLES:
        raise ValueError(f"Role must be one of: {', '.join(ROLES)}")
    return v


# ── Requests ────────────────────────────────────────────────────────
class RegisterRequest(RequestModel):
    username: str
    email: str
    password: str
    first_name: str | None = None
    last_name: str | None = None
    role: str = DEFAULT_ROLE

    @field_validator("username")
    @classmethod
    def _username(cls, v: str) -> str:
        return _check_username(v)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        return _check_strong_password(v)

    @field_validator("first_name")
    @classmethod
    def _first_name(cls, v: str | None) -> str | None:
        return _check_name(v, "First name")

    @field_validator("last_name")
    @classmethod
    def _last_name(cls, v: str | None) -> str | None:
        return _check_name(v, "Last name")

    @field_validator("role")
    @classmethod
    def _role(cls, v: str) -> str:
        return _check_role(v)  # type: ignore[return-value]


class UserCreate(RegisterRequest):
    """Admin-side creation: may also set activation state and team."""

    is_active: bool = True
    team: list[int] = Field(default_factory=list)


class LoginRequest(RequestModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        return _check_password(v)


class ChangePasswordRequest(RequestModel):
    current_password: str
    new_password: str

    @field_validator("current_password", "new_password")
    @classmethod
    def _password(cls, v: str) -> str:
        return _check_password(v)


class ProfileUpdate(RequestModel):
    """Partial update; only the fields present in the payload are applied."""

    username: str | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: str | None = None
    team: list[int] | None = None

    @field_validator("username")
    @classmethod
    def _username(cls, v: str | None) -> str | None:
        return None if v is None else _check_username(v)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str | None) -> str | None:
        return None if v is None else _check_email(v)

    @field_validator("first_name")
    @classmethod
    def _first_name(cls, v: str | None) -> str | None:
        return _check_name(v, "First name")

    @field_validator("last_name")
    @classmethod
    def _last_name(cls, v: str | None) -> str | None:
        return _check_name(v, "Last name")

    @field_validator("role")
    @classmethod
    def _role(cls, v: str | None) -> str | None:
        return _check_role(v)


class UserQuery(RequestModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    role: str | None = None
    is_active: bool | None = None
    search: str | None = Field(default=None, max_length=100)

    @field_validator("role")
    @classmethod
    def _role(cls, v: str | None) -> str | None:
        return _check_role(v)

    @field_validator("search")
    @classmethod
    def _search(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None


# ── Responses ───────────────────────────────────────────────────────
class TeamMemberRead(CamelModel):
    id: int
    username: str
    email: str
    first_name: str | None
    last_name: str | None
    full_name: str
    role: str


class UserRead(CamelModel):
    id: int
    username: str
    email: str
    first_name: str | None
    last_name: str | None
    full_name: str
    role: str
    is_active: bool
    team: list[TeamMemberRead] = []
    team_size: int = 0
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UserData(CamelModel):
    user: UserRead


class AuthData(CamelModel):
    user: UserRead
    tokens: TokenPair


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> Pagination:
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class UserListData(CamelModel):
    users: list[UserRead]
    pagination: Pagination


class UserStats(CamelModel):
    total_users: int
    total_admins: int
    total_managers: int
    total_regular_users: int
    total_active_users: int


class StatsData(CamelModel):
    stats: UserStats


class TeamData(CamelModel):
    manager: TeamMemberRead
    members: list[TeamMemberRead]
    team_size: int
