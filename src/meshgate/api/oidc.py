"""OIDC login routes.

Learn: /oidc/start stores state, nonce and the PKCE verifier in a signed,
short-lived flow cookie and redirects to the provider. /oidc/callback
checks the returned state against that cookie before exchanging the code,
so a callback can only complete a flow this browser started.
"""

import secrets
from typing import Optional

import structlog
from fastapi import APIRouter, Cookie, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from meshgate.api.auth import issue_session
from meshgate.auth.jwt import TokenError, create_flow_token, verify_token
from meshgate.auth.oidc import (
    OidcDiscoveryError,
    OidcProvider,
    OidcTokenValidationError,
    get_oidc_provider,
    new_pkce_pair,
)
from meshgate.config import settings
from meshgate.controlplane.client import ControlPlane, get_control_plane
from meshgate.db.engine import get_db
from meshgate.errors import NotFoundError, SessionError
from meshgate.services.login_service import LoginService, Profile

logger = structlog.get_logger()

router = APIRouter(prefix="/auth/oidc")

FLOW_COOKIE = "meshgate_oidc_flow"
FLOW_COOKIE_PATH = "/api/v1/auth/oidc"


def _require_provider(
    provider: Optional[OidcProvider] = Depends(get_oidc_provider),
) -> OidcProvider:
    if provider is None:
        raise NotFoundError("OIDC login is not configured")
    return provider


@router.get("/start")
async def oidc_start(provider: OidcProvider = Depends(_require_provider)):
    """Begin the authorization code flow."""
    state = secrets.token_urlsafe(24)
    nonce = secrets.token_urlsafe(24)
    verifier, challenge = new_pkce_pair()

    try:
        url = await provider.authorization_url(state, nonce, challenge)
    except OidcDiscoveryError as e:
        logger.error("oidc.discovery_failed", error=str(e))
        raise HTTPException(status_code=502, detail="Identity provider is unavailable")

    response = RedirectResponse(url, status_code=302)
    response.set_cookie(
        FLOW_COOKIE,
        create_flow_token(state, nonce, verifier),
        max_age=600,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path=FLOW_COOKIE_PATH,
    )
    return response


@router.get("/callback")
async def oidc_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    flow: Optional[str] = Cookie(None, alias=FLOW_COOKIE),
    provider: OidcProvider = Depends(_require_provider),
    db: AsyncSession = Depends(get_db),
    control_plane: ControlPlane = Depends(get_control_plane),
):
    """Finish the flow: validate, record the login, open a session, go home."""
    if error:
        logger.info("oidc.provider_error", error=error)
        raise SessionError(f"Identity provider returned an error: {error}")
    if not code or not state or not flow:
        raise SessionError("Incomplete OIDC callback")

    try:
        pending = verify_token(flow, "oidc_flow")
    except TokenError as e:
        raise SessionError(f"OIDC flow expired or invalid: {e}")
    if not secrets.compare_digest(pending.get("state", ""), state):
        raise SessionError("OIDC state mismatch")

    try:
        identity = await provider.complete(code, pending["verifier"], pending["nonce"])
    except (OidcDiscoveryError, OidcTokenValidationError) as e:
        logger.warning("oidc.callback_failed", error=str(e))
        raise SessionError("OIDC login failed")

    profile = Profile(email=identity.email, name=identity.name, picture=identity.picture)
    service = LoginService(db, control_plane)
    user = await service.complete_oidc_login(
        identity.subject, profile, linking_enabled=settings.oidc_link_remote_users
    )
    session = await service.open_oidc_session(user, profile)

    response = RedirectResponse("/" if user.onboarded else "/onboarding", status_code=302)
    issue_session(response, session)
    response.delete_cookie(FLOW_COOKIE, path=FLOW_COOKIE_PATH)
    return response
