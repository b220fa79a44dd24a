"""Auth API — API-key login, logout, current session.

Learn: Routes for the session lifecycle:
- POST /auth/login  → control-plane API key → session token (+ cookie)
- POST /auth/logout → delete the session row, clear the cookie
- GET  /auth/me     → who am I, with role and capability names

OIDC login lives in api/oidc.py and ends in the same issue_session().
"""

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from meshgate.auth.dependencies import CurrentSession, get_current_session
from meshgate.auth.jwt import create_session_token
from meshgate.auth.roles import capability_names, role_for_bitmask
from meshgate.config import settings
from meshgate.controlplane.client import ControlPlane, get_control_plane
from meshgate.db.engine import get_db
from meshgate.db.models import AuthSession, as_utc
from meshgate.schemas.auth import ApiKeyLogin, SessionCreated, SessionRead
from meshgate.services.login_service import LoginService
from meshgate.services.session_service import SessionService

router = APIRouter(prefix="/auth")


def issue_session(response: Response, session: AuthSession) -> SessionCreated:
    """Sign a token for `session` and set it as the session cookie."""
    expires_at = as_utc(session.expires_at)
    token = create_session_token(session.id, session.subject, expires_at)
    response.set_cookie(
        settings.session_cookie_name,
        token,
        expires=expires_at,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )
    return SessionCreated(
        token=token,
        kind=session.kind,
        subject=session.subject,
        expires_at=expires_at,
    )


# ─── Login ───────────────────────────────────────────────


@router.post("/login", response_model=SessionCreated)
async def login(
    body: ApiKeyLogin,
    response: Response,
    db: AsyncSession = Depends(get_db),
    control_plane: ControlPlane = Depends(get_control_plane),
):
    """Log in with a control-plane API key."""
    session = await LoginService(db, control_plane).authenticate_api_key(body.api_key)
    return issue_session(response, session)


# ─── Logout ──────────────────────────────────────────────


@router.post("/logout")
async def logout(
    response: Response,
    current: CurrentSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    await SessionService(db).revoke(current.session_id)
    response.delete_cookie(settings.session_cookie_name, path="/")
    return {"logged_out": True}


# ─── Current session ────────────────────────────────────


@router.get("/me", response_model=SessionRead)
async def get_me(current: CurrentSession = Depends(get_current_session)):
    """Get the current session's identity and capabilities."""
    role = role_for_bitmask(current.capabilities)
    return SessionRead(
        kind=current.kind,
        subject=current.subject,
        email=current.email,
        name=current.name,
        picture=current.picture,
        role=role.value if role else None,
        capabilities=capability_names(current.capabilities),
        onboarded=current.onboarded,
    )
