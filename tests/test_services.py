"""Tests for the user service helpers, store-error translation and app wiring."""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError

from userhub.core.exceptions import DuplicateError, ValidationError, duplicate_field
from userhub.db.base import Base
from userhub.main import create_app
from userhub.models.user import User
from userhub.services.users import commit_or_conflict, ensure_first_admin, ensure_unique, resolve_team


@pytest.mark.parametrize(
    "message, field",
    [
        ("UNIQUE constraint failed: users.email", "email"),
        ("UNIQUE constraint failed: users.username", "username"),
        (
            'duplicate key value violates unique constraint "ix_users_username"\n'
            "DETAIL:  Key (username)=(bob) already exists.",
            "username",
        ),
        ("NOT NULL constraint failed: users.hashed_password", None),
    ],
)
def test_duplicate_field(message, field):
    exc = IntegrityError("INSERT INTO users ...", {}, Exception(message))
    assert duplicate_field(exc) == field


@pytest.mark.asyncio
async def test_lost_race_maps_to_duplicate_message(session_factory, regular_user):
    # Skips the pre-check, as a concurrent request would have
    async with session_factory() as session:
        session.add(
            User(username="sneaky", email=regular_user.email, hashed_password="x", team=[])
        )
        with pytest.raises(DuplicateError) as exc:
            await commit_or_conflict(session)
    assert exc.value.message == "Email already registered"
    assert exc.value.status_code == 409


@pytest.mark.asyncio
async def test_ensure_unique_excludes_self(session_factory, regular_user):
    async with session_factory() as session:
        await ensure_unique(session, username="alice", exclude_id=regular_user.id)
        with pytest.raises(DuplicateError):
            await ensure_unique(session, username="alice")


@pytest.mark.asyncio
async def test_resolve_team_deduplicates(session_factory, make_user):
    member = await make_user("member")
    async with session_factory() as session:
        team = await resolve_team(session, [member.id, member.id])
        assert [m.id for m in team] == [member.id]
        with pytest.raises(ValidationError):
            await resolve_team(session, [member.id], owner_id=member.id)


@pytest.mark.asyncio
async def test_team_is_loaded_with_the_user(session_factory, make_user):
    member = await make_user("member")
    lead = await make_user("lead", role="manager", team_ids=[member.id])

    async with session_factory() as session:
        loaded = (await session.execute(select(User).where(User.id == lead.id))).scalar_one()

    # detached: any lazy load here would raise
    assert [m.username for m in loaded.team] == ["member"]
    assert loaded.team_size == 1


@pytest.mark.asyncio
async def test_first_admin_seeded_once(app, session_factory):
    config = app.state.settings
    async with session_factory() as session:
        assert await ensure_first_admin(session, config, app.state.password_hasher) is True
    async with session_factory() as session:
        assert await ensure_first_admin(session, config, app.state.password_hasher) is False
        admins = (await session.execute(select(func.count(User.id)).where(User.role == "admin"))).scalar_one()
    assert admins == 1


@pytest.mark.asyncio
async def test_lifespan_creates_tables_and_admin(app, async_client: AsyncClient):
    async with app.router.lifespan_context(app):
        resp = await async_client.post(
            "/api/v1/auth/login", json={"email": "root@userhub.test", "password": "RootPass123"}
        )
    assert resp.status_code == 200
    assert resp.json()["data"]["user"]["role"] == "admin"


@pytest.mark.asyncio
async def test_unknown_route_uses_envelope(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/nowhere")
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "message": "Not Found"}



@pytest.mark.asyncio
async def test_data_error_is_a_bad_request(app, async_client: AsyncClient):
    async def reject_value():
        raise DataError("SELECT ...", {}, Exception('invalid input syntax for type integer: "abc"'))

    app.add_api_route("/broken-value", reject_value)
    resp = await async_client.get("/broken-value")
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "message": "Invalid data format"}


@pytest.mark.asyncio
async def test_store_error_is_a_generic_500(app, async_client: AsyncClient):
    async def lose_connection():
        raise SQLAlchemyError("connection to 10.0.0.5 refused")

    app.add_api_route("/broken-store", lose_connection)
    resp = await async_client.get("/broken-store")
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "message": "Internal server error"}


# ── Rate limiting ───────────────────────────────────────────────────
@pytest.fixture
async def limited_client(test_settings):
    config = test_settings.model_copy(update={"RATE_LIMIT_ENABLED": True, "AUTH_RATE_LIMIT": "3/minute"})
    application = create_app(config)
    async with application.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    transport = ASGITransport(app=application)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await application.state.engine.dispose()


@pytest.mark.asyncio
async def test_rate_limit_follows_app_config(limited_client: AsyncClient):
    creds = {"email": "x@example.com", "password": "Secret123"}
    statuses = [
        (await limited_client.post("/api/v1/auth/login", json=creds)).status_code for _ in range(4)
    ]
    assert statuses == [401, 401, 401, 429]

    resp = await limited_client.post("/api/v1/auth/login", json=creds)
    assert resp.json() == {
        "success": False,
        "message": "Too many request from this IP, please try again later",
    }

    # counted per route
    resp = await limited_client.post("/api/v1/auth/register", json={})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_each_app_gets_its_own_limiter(test_settings):
    limited = create_app(test_settings.model_copy(update={"RATE_LIMIT_ENABLED": True}))
    unlimited = create_app(test_settings)

    assert limited.state.limiter is not unlimited.state.limiter
    assert limited.state.limiter.enabled is True
    assert unlimited.state.limiter.enabled is False

    await limited.state.engine.dispose()
    await unlimited.state.engine.dispose()
