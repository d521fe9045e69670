"""Pydantic schemas for JWT tokens."""

from __future__ import annotations

from userhub.schemas.common import CamelModel, RequestModel


class TokenPair(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(RequestModel):
    refresh_token: str
