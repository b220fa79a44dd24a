"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to resolve the
session behind a request and to gate handlers on capabilities.

The session token comes from either:
1. Authorization: Bearer <token> (API clients)
2. the session cookie (browsers)

Capabilities are resolved per request, not baked into the token: an
OIDC session reads its user's current `caps` row, so a role change takes
effect on the next request. API-key sessions always hold the owner mask.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Cookie, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from meshgate.auth.jwt import TokenError, verify_token
from meshgate.auth.roles import OWNER_MASK, Capability, has_capability
from meshgate.config import settings
from meshgate.controlplane.client import (
    ControlPlane,
    ControlPlaneClient,
    get_control_plane,
)
from meshgate.db.engine import get_db
from meshgate.errors import AuthorizationError, SessionError
from meshgate.services.session_service import SessionService
from meshgate.services.user_service import UserService


@dataclass
class CurrentSession:
    """The authenticated principal making the request.

    Learn: `capabilities` is what has_capability() reads, so a
    CurrentSession can be passed straight to it.
    """

    session_id: str
    kind: str  # "api_key" or "oidc"
    subject: str
    api_key: str
    capabilities: int
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None
    onboarded: bool = True


def _token_from_request(
    authorization: Optional[str], cookie: Optional[str]
) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:]
    return cookie


async def get_current_session(
    authorization: Optional[str] = Header(None),
    meshgate_session: Optional[str] = Cookie(None, alias=settings.session_cookie_name),
    db: AsyncSession = Depends(get_db),
) -> CurrentSession:
    """Resolve the session. SessionError (401) if absent or invalid."""
    token = _token_from_request(authorization, meshgate_session)
    if not token:
        raise SessionError("Authentication required")
    try:
        payload = verify_token(token, "session")
    except TokenError as e:
        raise SessionError(str(e))

    session = await SessionService(db).get_active(payload.get("sid", ""))
    if session is None:
        raise SessionError("Session expired or revoked")

    current = CurrentSession(
        session_id=session.id,
        kind=session.kind,
        subject=session.subject,
        api_key=session.api_key,
        capabilities=OWNER_MASK,
        email=session.email,
        name=session.name,
        picture=session.picture,
    )
    if session.kind == "oidc":
        user = await UserService(db).get_by_subject(session.subject)
        if user is None:
            # User record deleted out from under the session.
            raise SessionError("User no longer exists")
        current.capabilities = user.caps
        current.onboarded = user.onboarded
    return current


def require_capability(*capabilities: Capability):
    """Dependency factory: 403 unless the session holds any of `capabilities`.

    Usage:
        @router.get("/users")
        async def list_users(session=Depends(require_capability(Capability.read_users))):
    """

    async def _check(
        session: CurrentSession = Depends(get_current_session),
    ) -> CurrentSession:
        if not any(has_capability(session, c) for c in capabilities):
            raise AuthorizationError()
        return session

    return _check


def get_control_plane_client(
    session: CurrentSession = Depends(get_current_session),
    control_plane: ControlPlane = Depends(get_control_plane),
) -> ControlPlaneClient:
    """Control-plane client acting with the session's credential."""
    return control_plane.runtime(session.api_key)
