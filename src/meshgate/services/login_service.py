"""Login service — turns a credential or an OIDC identity into a session.

Learn: Two ways in, one way out (an AuthSession row):

- API key: the user brings a control-plane key. We ask the control plane
  for its key list *using that key*, match the prefix locally, check the
  expiration and store the full credential in the session.
- OIDC: the identity provider vouches for a subject. We record the login
  (owner bootstrap), link the subject to its control-plane user when one
  exists, and the session acts with the configured service credential.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from meshgate.auth.apikey import check_expiration, match_api_key, split_api_key
from meshgate.auth.linking import find_remote_user
from meshgate.auth.roles import Role
from meshgate.config import settings
from meshgate.controlplane.client import (
    ControlPlane,
    ControlPlaneAuthError,
    ControlPlaneError,
)
from meshgate.db.models import AuthSession, User
from meshgate.errors import (
    ApiKeyNotFoundError,
    AuthenticationError,
    ValidationError,
)
from meshgate.services.session_service import SessionService
from meshgate.services.user_service import UserService

logger = structlog.get_logger()

API_KEY_SUBJECT_PREFIX = "api-key:"


@dataclass(frozen=True)
class Profile:
    """Profile fields the identity provider sent along with the subject."""

    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None


class LoginService:
    """Authenticate principals and open sessions for them."""

    def __init__(self, db: AsyncSession, control_plane: ControlPlane):
        self.db = db
        self.control_plane = control_plane
        self.users = UserService(db)
        self.sessions = SessionService(db)

    # ─── API key ────────────────────────────────────────

    async def authenticate_api_key(self, raw: Optional[str]) -> AuthSession:
        """Validate a `<prefix>.<secret>` key and open an api_key session.

        Raises an AuthenticationError subclass on any rejection; nothing
        is written in that case.
        """
        prefix = split_api_key(raw)
        client = self.control_plane.runtime(raw)
        try:
            keys = await client.get_api_keys()
        except ControlPlaneAuthError:
            logger.info("auth.api_key_rejected", prefix=prefix, reason="remote")
            raise ApiKeyNotFoundError()

        try:
            key = match_api_key(keys, prefix)
            expiration = check_expiration(key)
        except AuthenticationError as e:
            logger.info("auth.api_key_rejected", prefix=prefix, reason=str(e))
            raise

        session = await self.sessions.create_session(
            kind="api_key",
            subject=f"{API_KEY_SUBJECT_PREFIX}{prefix}",
            api_key=raw,
            not_after=expiration,
        )
        logger.info("auth.api_key_login", prefix=prefix, expires_at=str(expiration))
        return session

    # ─── OIDC ───────────────────────────────────────────

    async def complete_oidc_login(
        self,
        subject: Optional[str],
        profile: Optional[Profile] = None,
        linking_enabled: bool = True,
    ) -> User:
        """Record an OIDC login and link it to its control-plane user.

        A failing remote lookup never fails the login: the existing link
        (if any) is left as it was.
        """
        if not subject:
            raise ValidationError("OIDC subject is required")

        user = await self.users.bootstrap_login(
            subject, default_role=Role(settings.oidc_default_role)
        )
        logger.info(
            "oidc.login",
            subject=subject,
            email=profile.email if profile else None,
        )

        if not linking_enabled:
            return user

        client = self.control_plane.runtime(settings.oidc_control_plane_api_key)
        try:
            remote_users = await client.get_users()
        except ControlPlaneError as e:
            logger.warning("oidc.link_failed", subject=subject, error=str(e))
            return user

        match = find_remote_user(remote_users, subject)
        if match is None:
            logger.info("oidc.no_remote_user", subject=subject)
            return user

        if user.remote_user_id != match.id:
            user = await self.users.link_remote_user(subject, match.id)
            logger.info("oidc.linked", subject=subject, remote_user_id=match.id)
        return user

    async def open_oidc_session(self, user: User, profile: Optional[Profile]) -> AuthSession:
        profile = profile or Profile()
        return await self.sessions.create_session(
            kind="oidc",
            subject=user.sub,
            api_key=settings.oidc_control_plane_api_key,
            email=profile.email,
            name=profile.name,
            picture=profile.picture,
        )
