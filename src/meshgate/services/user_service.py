"""User service — local user records, role writes and owner bootstrap.

Learn: Every write here is an upsert keyed by the unique subject (`sub`)
that only touches the columns it owns. A role change writes `caps`; a
login writes `caps` (only when bootstrapping) and `last_login_at`;
linking writes `remote_user_id`; onboarding writes `onboarded`. None of
them can clobber another's column, no matter how they interleave.

Owner bootstrap is the one check-then-act in the system: "if nobody is
owner yet, this login becomes owner". Doing the count and the write as
two statements lets two concurrent first logins both become owner. So
the check lives inside the write, as a CASE over an EXISTS subquery in a
single INSERT ... ON CONFLICT DO UPDATE, and on PostgreSQL that statement
runs under a transaction-scoped advisory lock so concurrent bootstraps
for different subjects are serialized too.
"""

from typing import Optional

import structlog
from sqlalchemy import case, delete, func, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from meshgate.auth.roles import OWNER_MASK, Role, role_capabilities
from meshgate.db.models import User, new_uuid, utcnow
from meshgate.errors import NotFoundError, ValidationError

logger = structlog.get_logger()

# Arbitrary but fixed key for pg_advisory_xact_lock.
OWNER_BOOTSTRAP_LOCK = 0x6D67_6F77  # "mgow"


class UserService:
    """Business logic for local users."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Upsert helpers ─────────────────────────────────

    @property
    def _dialect(self) -> str:
        return self.db.get_bind().dialect.name

    def _insert(self):
        if self._dialect == "postgresql":
            return postgresql.insert(User)
        if self._dialect == "sqlite":
            return sqlite.insert(User)
        raise RuntimeError(f"Unsupported database dialect: {self._dialect}")

    async def _fetch(self, subject: str) -> User:
        # populate_existing: the upsert bypassed the identity map.
        result = await self.db.execute(
            select(User)
            .where(User.sub == subject)
            .execution_options(populate_existing=True)
        )
        return result.scalars().one()

    # ─── Queries ────────────────────────────────────────

    async def get_by_subject(self, subject: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.sub == subject))
        return result.scalars().first()

    async def list_users(self) -> list[User]:
        result = await self.db.execute(select(User).order_by(User.created_at, User.sub))
        return list(result.scalars().all())

    async def count_by_caps(self, caps: int) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(User).where(User.caps == caps)
        )
        return result.scalar_one()

    async def count_owners(self) -> int:
        return await self.count_by_caps(OWNER_MASK)

    # ─── Writes ─────────────────────────────────────────

    async def reassign_subject(self, subject: str, role: Role) -> User:
        """Set a subject's role, creating the record if needed.

        On conflict only `caps` is written; `onboarded` and
        `remote_user_id` keep their stored values.
        """
        if not subject:
            raise ValidationError("Subject is required")
        caps = role_capabilities(role)
        stmt = self._insert().values(
            id=new_uuid(), sub=subject, caps=caps, onboarded=False
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["sub"],
            set_={"caps": caps},
        )
        await self.db.execute(stmt)
        await self.db.commit()
        logger.info("users.role_assigned", subject=subject, role=Role(role).value)
        return await self._fetch(subject)

    async def bootstrap_login(
        self, subject: str, default_role: Role = Role.member
    ) -> User:
        """Record a login, making this subject owner if there is none.

        - no owner anywhere → row created/updated with the owner mask
        - an owner exists   → new row gets `default_role`, an existing row
                              keeps its mask
        """
        if not subject:
            raise ValidationError("Subject is required")
        default_role = Role(default_role)
        if default_role is Role.owner:
            raise ValidationError("Default role cannot be owner")

        default_caps = role_capabilities(default_role)
        existing_owner = aliased(User, name="existing_owner")
        owner_exists = (
            select(existing_owner.id)
            .where(existing_owner.caps == OWNER_MASK)
            .exists()
        )
        now = utcnow()

        stmt = self._insert().values(
            id=new_uuid(),
            sub=subject,
            caps=case((owner_exists, default_caps), else_=OWNER_MASK),
            onboarded=False,
            last_login_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["sub"],
            set_={
                "caps": case((owner_exists, User.caps), else_=OWNER_MASK),
                "last_login_at": now,
            },
        )

        if self._dialect == "postgresql":
            await self.db.execute(
                text("SELECT pg_advisory_xact_lock(:key)"),
                {"key": OWNER_BOOTSTRAP_LOCK},
            )
        await self.db.execute(stmt)
        await self.db.commit()

        user = await self._fetch(subject)
        if user.caps == OWNER_MASK:
            logger.info("users.login_as_owner", subject=subject)
        return user

    async def link_remote_user(self, subject: str, remote_user_id: str) -> User:
        """Point a local user at its control-plane user. Touches nothing else."""
        result = await self.db.execute(
            update(User)
            .where(User.sub == subject)
            .values(remote_user_id=remote_user_id)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"User {subject!r} not found")
        await self.db.commit()
        return await self._fetch(subject)

    async def mark_onboarded(self, subject: str) -> User:
        result = await self.db.execute(
            update(User).where(User.sub == subject).values(onboarded=True)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"User {subject!r} not found")
        await self.db.commit()
        return await self._fetch(subject)

    async def delete_user(self, subject: str) -> None:
        result = await self.db.execute(delete(User).where(User.sub == subject))
        if result.rowcount == 0:
            raise NotFoundError(f"User {subject!r} not found")
        await self.db.commit()
        logger.info("users.deleted", subject=subject)
