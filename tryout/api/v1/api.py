"""
API v1 router combining all v1 endpoints.
"""
from fastapi import APIRouter
from tryout.api.v1 import health, rankings, sessions

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(health.router, tags=["health"])
api_router.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
api_router.include_router(rankings.router, prefix="/packages", tags=["rankings"])
