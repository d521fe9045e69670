"""
FastAPI dependencies — database session, shared services and auth guards.

Per-request pipeline: request validation (pydantic, done by FastAPI) →
``authenticate`` (resolves the bearer token to a user and attaches it to
``request.state.user``) → ``require_roles`` (role gate) → endpoint.
Credential endpoints additionally pass ``auth_rate_limit``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable, Coroutine
from typing import Any, Optional

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader
from limits import parse
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from userhub.core.config import Settings
from userhub.core.exceptions import Forbidden, InternalError, TooManyRequests, Unauthorized
from userhub.core.security import PasswordHasher, TokenExpired, TokenInvalid, TokenService
from userhub.models.user import User

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "

# auto_error=False so a missing header gets our own 401 message
authorization_header = APIKeyHeader(
    name="Authorization",
    auto_error=False,
    description="Access token formatted as `Bearer <token>`",
)


# ── Shared services (built once in create_app) ──────────────────────
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_password_hasher(request: Request) -> PasswordHasher:
    return request.app.state.password_hasher


# ── Database session ────────────────────────────────────────────────
async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


# ── Rate limiting ───────────────────────────────────────────────────
async def auth_rate_limit(request: Request) -> None:
    """Count the call against ``AUTH_RATE_LIMIT``, per client IP and route."""
    limiter: Limiter = request.app.state.limiter
    if not limiter.enabled:
        return

    client = get_remote_address(request)
    item = parse(request.app.state.settings.AUTH_RATE_LIMIT)
    if not limiter.limiter.hit(item, client, request.url.path):
        logger.warning("Rate limit hit on %s by %s", request.url.path, client)
        raise TooManyRequests()


# ── Auth dependencies ───────────────────────────────────────────────
def extract_bearer_token(header: Optional[str]) -> str:
    """Return the token from ``Bearer <token>`` or raise ``Unauthorized``."""
    token = header[len(BEARER_PREFIX):] if header else ""
    if not header or not header.startswith(BEARER_PREFIX) or not token:
        raise Unauthorized("Access token is required, please provide a valid token")
    return token


async def authenticate(
    request: Request,
    authorization: Optional[str] = Depends(authorization_header),
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> User:
    """Verify the access token and attach the matching user to the request."""
    token = extract_bearer_token(authorization)

    try:
        claims = tokens.verify_access_token(token)
    except TokenExpired:
        raise Unauthorized("Token expired. Please login again.") from None
    except TokenInvalid:
        raise Unauthorized("Invalid token. Please provide a valid access token.") from None

    # Access tokens carry the email; username is accepted for tokens minted elsewhere
    conditions = [
        column == claims[key]
        for column, key in ((User.email, "email"), (User.username, "username"))
        if claims.get(key)
    ]
    if not conditions:
        raise Unauthorized("User not found.Token maybe invalid")

    try:
        result = await db.execute(select(User).where(or_(*conditions)).limit(1))
        user = result.scalar_one_or_none()
    except SQLAlchemyError as exc:
        logger.error("Authentication lookup failed: %s", exc, exc_info=True)
        raise InternalError("Authentication failed. Please try again.") from exc

    if user is None:
        raise Unauthorized("User not found.Token maybe invalid")

    request.state.user = user
    return user


def authorize(user: Optional[User], allowed_roles: frozenset[str]) -> User:
    """Pure role gate: no identity is 401, a role outside the set is 403."""
    if user is None:
        raise Unauthorized("Authentication required")
    if user.role not in allowed_roles:
        raise Forbidden("access denied")
    return user


def require_roles(*roles: str) -> Callable[..., Coroutine[Any, Any, User]]:
    """Build a dependency admitting only authenticated users with one of *roles*."""
    allowed = frozenset(roles)

    async def _guard(request: Request, _user: User = Depends(authenticate)) -> User:
        return authorize(getattr(request.state, "user", None), allowed)

    return _guard


require_admin = require_roles("admin")
require_manager = require_roles("admin", "manager")
