"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Unlike a blanket auth dependency on include_router, every
protected handler declares its own gate (get_current_session or
require_capability(...)), because the capability differs per route.
Health, login and the OIDC legs are open.
"""

from fastapi import APIRouter

from meshgate.api.auth import router as auth_router
from meshgate.api.health import router as health_router
from meshgate.api.oidc import router as oidc_router
from meshgate.api.onboarding import router as onboarding_router
from meshgate.api.preauth_keys import router as preauth_keys_router
from meshgate.api.users import router as users_router

api_router = APIRouter(prefix="/api/v1")

# Open routes
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(oidc_router, tags=["auth"])

# Session-gated routes
api_router.include_router(preauth_keys_router, tags=["preauth-keys"])
api_router.include_router(users_router, tags=["users"])
api_router.include_router(onboarding_router, tags=["onboarding"])
