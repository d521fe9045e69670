"""
Account endpoints — register, login, token refresh, logout & profile self-service.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from userhub.api.v1.deps import (
    auth_rate_limit,
    authenticate,
    get_db,
    get_password_hasher,
    get_token_service,
)
from userhub.core.exceptions import Unauthorized, ValidationError
from userhub.core.security import PasswordHasher, TokenError, TokenService
from userhub.models.user import User
from userhub.schemas.common import Envelope
from userhub.schemas.token import RefreshRequest, TokenPair
from userhub.schemas.user import (
    AuthData,
    ChangePasswordRequest,
    LoginRequest,
    ProfileUpdate,
    RegisterRequest,
    UserData,
    UserRead,
)
from userhub.services.users import commit_or_conflict, create_user, ensure_unique, get_user, resolve_team

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


def _auth_data(user: User, tokens: TokenService, refresh_token: str | None = None) -> AuthData:
    return AuthData(
        user=UserRead.model_validate(user),
        tokens=TokenPair(
            access_token=tokens.issue_access_token(user.id, user.email, user.role),
            refresh_token=refresh_token or tokens.issue_refresh_token(user.id),
        ),
    )


@router.post(
    "/register",
    response_model=Envelope[AuthData],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_rate_limit)],
)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    tokens: TokenService = Depends(get_token_service),
) -> Envelope[AuthData]:
    """Create an account and return it with a fresh token pair."""
    user = await create_user(
        db,
        hasher,
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=body.role,
    )
    return Envelope(message="User registered successfully", data=_auth_data(user, tokens))


@router.post("/login", response_model=Envelope[AuthData], dependencies=[Depends(auth_rate_limit)])
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    tokens: TokenService = Depends(get_token_service),
) -> Envelope[AuthData]:
    """Authenticate with email/password."""
    result = await db.execute(select(User).where(User.email == body.email))
    user = result.scalar_one_or_none()

    if user is None:
        raise Unauthorized("user is not exist! please register first.")
    if not await hasher.verify_async(body.password, user.hashed_password):
        raise Unauthorized("invalid credentials.")

    user.last_login = datetime.now(timezone.utc)
    await db.commit()
    logger.info("User %s logged in", user.id)

    return Envelope(message="Login successful", data=_auth_data(user, tokens))


@router.post("/refresh", response_model=Envelope[AuthData])
async def refresh_access_token(
    body: RefreshRequest,
    _current_user: User = Depends(authenticate),
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> Envelope[AuthData]:
    """Mint a new access token; the refresh token is echoed back unchanged."""
    try:
        claims = tokens.verify_refresh_token(body.refresh_token)
        user_id = int(claims["userId"])
    except (TokenError, KeyError, ValueError):
        raise Unauthorized("Refresh token is not valid") from None

    user = await get_user(db, user_id)
    if user is None:
        raise Unauthorized("Refresh token is not valid")

    return Envelope(
        message="Token updated successfully",
        data=_auth_data(user, tokens, refresh_token=body.refresh_token),
    )


@router.post("/logout", response_model=Envelope[None])
async def logout() -> Envelope[None]:
    """Tokens are stateless; the client simply discards them."""
    return Envelope(message="Logged out successfully")


# ── Profile (any authenticated user) ───────────────────────────────
@router.get("/profile", response_model=Envelope[UserData])
async def read_profile(
    current_user: User = Depends(authenticate),
) -> Envelope[UserData]:
    """Return profile of the currently authenticated user."""
    return Envelope(data=UserData(user=UserRead.model_validate(current_user)))


@router.put("/profile", response_model=Envelope[UserData])
async def update_profile(
    body: ProfileUpdate,
    current_user: User = Depends(authenticate),
    db: AsyncSession = Depends(get_db),
) -> Envelope[UserData]:
    """Apply the supplied fields to the caller's own record."""
    changes = body.model_dump(exclude_unset=True, exclude_none=True)

    username = changes.get("username")
    email = changes.get("email")
    await ensure_unique(
        db,
        username=username if username != current_user.username else None,
        email=email if email != current_user.email else None,
        exclude_id=current_user.id,
    )
    if "team" in changes:
        changes["team"] = await resolve_team(db, changes["team"], owner_id=current_user.id)

    for field, value in changes.items():
        setattr(current_user, field, value)

    await commit_or_conflict(db)
    logger.info("Profile updated for user %s: %s", current_user.id, sorted(changes))
    return Envelope(
        message="Profile updated successfully",
        data=UserData(user=UserRead.model_validate(current_user)),
    )


@router.put("/change-password", response_model=Envelope[None])
async def change_password(
    body: ChangePasswordRequest,
    current_user: User = Depends(authenticate),
    db: AsyncSession = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
) -> Envelope[None]:
    """Replace the password after checking the current one."""
    if not await hasher.verify_async(body.current_password, current_user.hashed_password):
        raise ValidationError(
            "current password is not valid",
            [{"field": "currentPassword", "message": "current password is not valid"}],
        )

    current_user.hashed_password = await hasher.hash_async(body.new_password)
    await db.commit()
    logger.info("Password changed for user %s", current_user.id)
    return Envelope(message="password has been updated successfully")
