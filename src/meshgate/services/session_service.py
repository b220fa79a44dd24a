"""Session service — persisted login sessions.

Learn: A session row holds the full control-plane credential the session
acts with. The browser only ever gets a signed token naming the row
(see auth.jwt), so the credential never leaves the server after login.
"""

import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from meshgate.config import settings
from meshgate.db.models import AuthSession, as_utc, utcnow


class SessionService:
    """Create, resolve and revoke login sessions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_session(
        self,
        *,
        kind: str,
        subject: str,
        api_key: str,
        email: Optional[str] = None,
        name: Optional[str] = None,
        picture: Optional[str] = None,
        not_after: Optional[datetime] = None,
    ) -> AuthSession:
        """Persist a session. `not_after` caps the configured lifetime."""
        expires_at = utcnow() + timedelta(minutes=settings.session_expire_minutes)
        if not_after is not None and as_utc(not_after) < expires_at:
            expires_at = as_utc(not_after)

        session = AuthSession(
            id=secrets.token_urlsafe(32),
            kind=kind,
            subject=subject,
            api_key=api_key,
            email=email,
            name=name,
            picture=picture,
            expires_at=expires_at,
        )
        self.db.add(session)
        await self.db.commit()
        return session

    async def get_active(self, session_id: str) -> Optional[AuthSession]:
        """Session by id, or None if it's gone or expired."""
        result = await self.db.execute(
            select(AuthSession).where(AuthSession.id == session_id)
        )
        session = result.scalars().first()
        if session is None or as_utc(session.expires_at) <= utcnow():
            return None
        return session

    async def revoke(self, session_id: str) -> None:
        await self.db.execute(delete(AuthSession).where(AuthSession.id == session_id))
        await self.db.commit()

    async def purge_expired(self) -> int:
        result = await self.db.execute(
            delete(AuthSession).where(AuthSession.expires_at <= utcnow())
        )
        await self.db.commit()
        return result.rowcount
