"""
V1 API router aggregator — wires all endpoint modules together.
"""

from fastapi import APIRouter

from userhub.api.v1.endpoints import auth, users

api_router = APIRouter()

# Registration, login, tokens, profile
api_router.include_router(auth.router)

# Admin listing, creation, stats, teams
api_router.include_router(users.router)
