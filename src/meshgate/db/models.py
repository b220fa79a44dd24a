"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Alembic auto-generates migrations by comparing
these models to the actual DB.

Key concepts:
- Generic Uuid/Boolean/Integer types so the same models run on
  PostgreSQL (production) and SQLite (tests)
- `users.sub` is the unique upsert key for every login write
- `users.remote_user_id` is a weak reference into the control plane:
  no foreign key, may dangle, never required to resolve
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    false,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(Base):
    """A local user, keyed by the OIDC subject.

    Learn: `caps` is the raw capability bitmask (see auth.roles), not a
    role name. Login writes only ever touch `caps` and `last_login_at`;
    `onboarded` and `remote_user_id` have their own dedicated writes.
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_caps", "caps"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    sub: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    caps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    onboarded: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    remote_user_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class AuthSession(Base):
    """A login session.

    Learn: The signed token handed to the browser only carries the
    session id. The raw control-plane credential stays server-side in
    `api_key` and is used as the bearer token for every remote call
    made on behalf of this session.

    kind: "api_key" (user brought their own key) or "oidc".
    """

    __tablename__ = "sessions"
    __table_args__ = (
        Index("idx_sessions_subject", "subject"),
        Index("idx_sessions_expires", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    api_key: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    picture: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
