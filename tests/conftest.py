"""
Shared test fixtures for the Userhub test suite.

Each test gets a fresh app wired to an in-memory aiosqlite database
(single shared connection via StaticPool), low bcrypt cost and rate
limiting switched off.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from userhub.core.config import Settings
from userhub.core.security import PasswordHasher, TokenService
from userhub.db.base import Base
from userhub.main import create_app
from userhub.models.user import User
from userhub.services.users import create_user

DEFAULT_PASSWORD = "Secret123"


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        JWT_SECRET="test-access-secret",
        JWT_REFRESH_SECRET="test-refresh-secret",
        PASSWORD_HASH_ROUNDS=4,
        RATE_LIMIT_ENABLED=False,
        CORS_ORIGINS=["*"],
        FIRST_ADMIN_EMAIL="root@userhub.test",
        FIRST_ADMIN_USERNAME="root",
        FIRST_ADMIN_PASSWORD="RootPass123",
    )


@pytest.fixture
async def app(test_settings: Settings) -> AsyncGenerator[FastAPI, None]:
    """Create all tables before usage and dispose the engine after."""
    application = create_app(test_settings)
    async with application.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield application

    async with application.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await application.state.engine.dispose()


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def session_factory(app: FastAPI):
    """Raw session factory for direct queries in tests."""
    return app.state.session_factory


@pytest.fixture
def token_service(app: FastAPI) -> TokenService:
    return app.state.token_service


@pytest.fixture
def hasher(app: FastAPI) -> PasswordHasher:
    return app.state.password_hasher


# ── Users & auth headers ────────────────────────────────────────────
@pytest.fixture
def make_user(app: FastAPI) -> Callable[..., Awaitable[User]]:
    """Insert a user straight through the service layer."""

    async def _make(
        username: str,
        email: str | None = None,
        password: str = DEFAULT_PASSWORD,
        **kwargs: Any,
    ) -> User:
        async with app.state.session_factory() as session:
            return await create_user(
                session,
                app.state.password_hasher,
                username=username,
                email=email or f"{username.lower()}@example.com",
                password=password,
                **kwargs,
            )

    return _make


@pytest.fixture
def headers_for(token_service: TokenService) -> Callable[[User], dict[str, str]]:
    def _headers(user: User) -> dict[str, str]:
        token = token_service.issue_access_token(user.id, user.email, user.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
async def admin(make_user) -> User:
    return await make_user("admin1", role="admin")


@pytest.fixture
async def admin_headers(admin: User, headers_for) -> dict[str, str]:
    return headers_for(admin)


@pytest.fixture
async def regular_user(make_user) -> User:
    return await make_user("alice", first_name="Alice", last_name="Smith")


@pytest.fixture
async def user_headers(regular_user: User, headers_for) -> dict[str, str]:
    return headers_for(regular_user)
