"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Health and auth routers are open at the router level. Individual
auth endpoints (logout, sessions, me) pull in get_current_user themselves,
so login/register/refresh stay reachable without an access token.
"""

from fastapi import APIRouter

from postpilot.api.auth import router as auth_router
from postpilot.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
