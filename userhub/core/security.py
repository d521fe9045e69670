"""
JWT token creation / verification and password hashing (bcrypt).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from starlette.concurrency import run_in_threadpool

from userhub.core.config import Settings


class TokenError(Exception):
    """Base class for token verification failures."""


class TokenInvalid(TokenError):
    """Signature, structure or token type is wrong."""


class TokenExpired(TokenError):
    """Signature is valid but the ``exp`` claim is in the past."""


# ── Passwords ───────────────────────────────────────────────────────
class PasswordHasher:
    """One-way salted bcrypt hashing with a verify counterpart."""

    def __init__(self, rounds: int = 12) -> None:
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )

    def hash(self, plain: str) -> str:
        return self._context.hash(plain)

    def verify(self, plain: str, hashed: str) -> bool:
        return self._context.verify(plain, hashed)

    # bcrypt is CPU bound; keep it off the event loop.
    async def hash_async(self, plain: str) -> str:
        return await run_in_threadpool(self.hash, plain)

    async def verify_async(self, plain: str, hashed: str) -> bool:
        return await run_in_threadpool(self.verify, plain, hashed)


# ── JWT tokens ──────────────────────────────────────────────────────
class TokenService:
    """Issues and verifies access / refresh tokens.

    Access and refresh tokens are signed with different secrets, so a
    leaked access secret cannot mint refresh tokens (and vice versa).
    Tokens are stateless: nothing is stored server side, which also
    means a token stays valid until it expires.
    """

    def __init__(self, config: Settings) -> None:
        self._algorithm = config.JWT_ALGORITHM
        self.access_secret = config.JWT_SECRET
        self.refresh_secret = config.JWT_REFRESH_SECRET
        self._access_ttl = timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
        self._refresh_ttl = timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS)

    def _sign(self, claims: dict[str, Any], secret: str, ttl: timedelta) -> str:
        now = datetime.now(timezone.utc)
        return jwt.encode(
            {**claims, "iat": now, "exp": now + ttl},
            secret,
            algorithm=self._algorithm,
        )

    def issue_access_token(
        self,
        user_id: int | str,
        email: str,
        role: str,
        expires_delta: timedelta | None = None,
    ) -> str:
        return self._sign(
            {"userId": str(user_id), "email": email, "role": role, "type": "access"},
            self.access_secret,
            expires_delta or self._access_ttl,
        )

    def issue_refresh_token(
        self,
        user_id: int | str,
        expires_delta: timedelta | None = None,
    ) -> str:
        return self._sign(
            {"userId": str(user_id), "type": "refresh"},
            self.refresh_secret,
            expires_delta or self._refresh_ttl,
        )

    def verify(self, token: str, secret: str) -> dict[str, Any]:
        """Return the claim set, or raise ``TokenInvalid`` / ``TokenExpired``.

        python-jose checks the signature before the registered claims, so
        a tampered token that is also past its expiry reports as invalid.
        """
        try:
            return jwt.decode(token, secret, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise TokenExpired("token has expired") from exc
        except JWTError as exc:
            raise TokenInvalid(str(exc)) from exc

    def _verify_typed(self, token: str, secret: str, token_type: str) -> dict[str, Any]:
        claims = self.verify(token, secret)
        if claims.get("type") != token_type:
            raise TokenInvalid(f"expected a {token_type} token")
        return claims

    def verify_access_token(self, token: str) -> dict[str, Any]:
        return self._verify_typed(token, self.access_secret, "access")

    def verify_refresh_token(self, token: str) -> dict[str, Any]:
        return self._verify_typed(token, self.refresh_secret, "refresh")
