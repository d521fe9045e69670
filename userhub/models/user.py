"""
User model — authentication, role-based access control & team grouping.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Table
from sqlalchemy.orm import relationship

from userhub.db.base import Base

ROLES = ("admin", "manager", "user")
DEFAULT_ROLE = "user"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Direct reports: manager_id oversees member_id
team_members = Table(
    "team_members",
    Base.metadata,
    Column("manager_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("member_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    username: str = Column(String(30), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    email: str = Column(String(320), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    hashed_password: str = Column(String(128), nullable=False)  # type: ignore[assignment]
    first_name: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]
    last_name: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]
    role: str = Column(  # type: ignore[assignment]
        String(20),
        nullable=False,
        default=DEFAULT_ROLE,
        server_default=DEFAULT_ROLE,
        index=True,
    )  # admin | manager | user
    is_active: bool = Column(Boolean, default=True, server_default="true", index=True)  # type: ignore[assignment]
    last_login: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)  # type: ignore[assignment]
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    # join_depth: eager-load one level of a self-referential relationship;
    # members' own teams stay unloaded
    team = relationship(
        "User",
        secondary=team_members,
        primaryjoin=id == team_members.c.manager_id,
        secondaryjoin=id == team_members.c.member_id,
        lazy="selectin",
        join_depth=1,
    )

    @property
    def full_name(self) -> str:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name or self.last_name or self.username

    @property
    def team_size(self) -> int:
        return len(self.team) if self.team else 0
