"""
Userhub — Application entry point.

This is the **only** file that assembles the app.  All business logic
lives in the `api/`, `services/`, `models/`, and `core/` packages.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter
from slowapi.util import get_remote_address

from userhub.api.v1.api import api_router
from userhub.core.config import Settings, settings, warn_on_insecure_secrets
from userhub.core.exceptions import register_exception_handlers
from userhub.core.middleware import RequestLoggingMiddleware
from userhub.core.security import PasswordHasher, TokenService
from userhub.db.base import Base
from userhub.db.session import build_engine, build_session_factory

# Ensure all models are imported so metadata.create_all can see them
from userhub.models.user import User  # noqa: F401
from userhub.services.users import ensure_first_admin

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    config: Settings = app.state.settings

    # Create all tables
    async with app.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")

    # Seed default admin user on first run
    async with app.state.session_factory() as session:
        await ensure_first_admin(session, config, app.state.password_hasher)

    logger.info("🚀 %s v%s started", config.PROJECT_NAME, config.VERSION)
    yield
    await app.state.engine.dispose()
    logger.info("Shutdown complete")


# ── App factory ─────────────────────────────────────────────────────
def create_app(config: Settings | None = None) -> FastAPI:
    config = config or settings
    warn_on_insecure_secrets(config)

    application = FastAPI(
        title=config.PROJECT_NAME,
        description="User accounts, authentication and team management",
        version=config.VERSION,
        openapi_url=f"{config.API_V1_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Shared, immutable-per-process services
    engine = build_engine(config.DATABASE_URL)
    application.state.settings = config
    application.state.engine = engine
    application.state.session_factory = build_session_factory(engine)
    application.state.token_service = TokenService(config)
    application.state.password_hasher = PasswordHasher(config.PASSWORD_HASH_ROUNDS)

    # Rate limiting on credential endpoints
    application.state.limiter = Limiter(
        key_func=get_remote_address,
        enabled=config.RATE_LIMIT_ENABLED,
    )

    # CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestLoggingMiddleware)

    # Global exception handlers (prevent stack-trace leakage)
    register_exception_handlers(application)

    # Mount API v1
    application.include_router(api_router, prefix=config.API_V1_PREFIX)

    return application


app = create_app()
