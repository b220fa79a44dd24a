"""Pre-auth key service — listing across users, status view, create/expire.

Learn: The control plane scopes pre-auth keys to users. Newer servers can
list every key in one call; older ones only answer per user. Listing
therefore tries the bulk call first and, on *any* failure, falls back to
one call per user run concurrently with asyncio.gather. In the fallback
each user's call is isolated: a failure becomes a PartialFailure record
and the other users' keys are still shown.

The status view (active / expired / reusable / ephemeral) is a pure
function of the keys and `now`, recomputed on every call.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import structlog

from meshgate.auth.linking import owns_remote_user
from meshgate.auth.roles import Capability, has_capability
from meshgate.controlplane.client import (
    ControlPlaneClient,
    ControlPlaneError,
    UnsupportedEndpointError,
)
from meshgate.controlplane.models import PreAuthKey, RemoteUser
from meshgate.errors import AuthorizationError, ValidationError

logger = structlog.get_logger()

STATUS_FILTERS = ("all", "active", "expired", "reusable", "ephemeral")
USER_FILTER_ALL = "all"
USER_FILTER_TAG_ONLY = "tag-only"


@dataclass
class PreAuthKeyGroup:
    """Keys of one owner. owner=None holds tag-only keys."""

    owner: Optional[RemoteUser]
    keys: list[PreAuthKey] = field(default_factory=list)


@dataclass
class PartialFailure:
    user: RemoteUser
    error: str


@dataclass
class PreAuthKeyListing:
    groups: list[PreAuthKeyGroup] = field(default_factory=list)
    partial_failures: list[PartialFailure] = field(default_factory=list)


# ─── Status view ────────────────────────────────────────


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def is_expired(key: PreAuthKey, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    if key.used and not key.reusable:
        return True
    return key.expiration is not None and now >= _utc(key.expiration)


def is_active(key: PreAuthKey, now: Optional[datetime] = None) -> bool:
    return not is_expired(key, now)


def key_status(key: PreAuthKey, now: Optional[datetime] = None) -> str:
    return "expired" if is_expired(key, now) else "active"


def _status_matches(key: PreAuthKey, status: str, now: datetime) -> bool:
    if status == "all":
        return True
    if status == "active":
        return is_active(key, now)
    if status == "expired":
        return is_expired(key, now)
    if status == "reusable":
        return key.reusable
    if status == "ephemeral":
        return key.ephemeral
    raise ValidationError(f"Unknown status filter: {status}")


def _owner_matches(group: PreAuthKeyGroup, user_filter: str) -> bool:
    if user_filter == USER_FILTER_ALL:
        return True
    if user_filter == USER_FILTER_TAG_ONLY:
        return group.owner is None
    return group.owner is not None and group.owner.id == user_filter


def filter_preauth_keys(
    groups: Sequence[PreAuthKeyGroup],
    status: str = "all",
    user_filter: str = USER_FILTER_ALL,
    now: Optional[datetime] = None,
) -> list[PreAuthKeyGroup]:
    """Narrow groups by owner and keys by status. Empty groups are dropped."""
    now = now or datetime.now(timezone.utc)
    if status not in STATUS_FILTERS:
        raise ValidationError(f"Unknown status filter: {status}")

    result = []
    for group in groups:
        if not _owner_matches(group, user_filter):
            continue
        keys = [k for k in group.keys if _status_matches(k, status, now)]
        if keys:
            result.append(PreAuthKeyGroup(owner=group.owner, keys=keys))
    return result


def normalize_tags(tags: Optional[Sequence[str]]) -> list[str]:
    """Strip blanks and make every tag `tag:`-prefixed."""
    result = []
    for tag in tags or []:
        tag = tag.strip()
        if not tag:
            continue
        result.append(tag if tag.startswith("tag:") else f"tag:{tag}")
    return result


class PreAuthKeyService:
    """Pre-auth key operations for one session's control-plane client."""

    def __init__(self, client: ControlPlaneClient):
        self.client = client

    # ─── Listing ────────────────────────────────────────

    async def list_preauth_keys(self, users: Sequence[RemoteUser]) -> PreAuthKeyListing:
        """Keys of the given users grouped by owner. Never raises for remote errors."""
        try:
            keys = await self.client.get_all_preauth_keys()
        except UnsupportedEndpointError:
            pass
        except ControlPlaneError as e:
            logger.warning("preauth.bulk_failed", error=str(e))
        else:
            return self._group_bulk(keys, users)

        return await self._list_per_user(users)

    @staticmethod
    def _group_bulk(
        keys: Sequence[PreAuthKey], users: Sequence[RemoteUser]
    ) -> PreAuthKeyListing:
        tag_only = [k for k in keys if k.owner_id is None]
        by_owner: dict[str, list[PreAuthKey]] = {}
        for key in keys:
            if key.owner_id is not None:
                by_owner.setdefault(key.owner_id, []).append(key)

        listing = PreAuthKeyListing()
        if tag_only:
            listing.groups.append(PreAuthKeyGroup(owner=None, keys=tag_only))
        for user in users:
            owned = by_owner.get(user.id)
            if owned:
                listing.groups.append(PreAuthKeyGroup(owner=user, keys=owned))
        return listing

    async def _list_per_user(self, users: Sequence[RemoteUser]) -> PreAuthKeyListing:
        targets = [u for u in users if u.id]
        results = await asyncio.gather(
            *(self.client.get_preauth_keys(u.id) for u in targets),
            return_exceptions=True,
        )

        listing = PreAuthKeyListing()
        for user, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("preauth.user_listing_failed", user_id=user.id, error=str(result))
                listing.partial_failures.append(PartialFailure(user=user, error=str(result)))
            elif isinstance(result, BaseException):
                raise result
            else:
                listing.groups.append(PreAuthKeyGroup(owner=user, keys=list(result)))
        return listing

    # ─── Create / expire ────────────────────────────────

    async def _check_manage(self, session, user_id: Optional[str]) -> None:
        """Raise AuthorizationError unless `session` may manage keys of `user_id`.

        generate_authkeys covers any user and tag-only keys.
        generate_own_authkeys covers only the remote user whose linking
        key is the session's own subject.
        """
        if has_capability(session, Capability.generate_authkeys):
            return
        # Self-service never covers tag-only keys; an unknown user is a 403, not a 404.
        if not has_capability(session, Capability.generate_own_authkeys) or not user_id:
            raise AuthorizationError()
        owner = await self._resolve_user(user_id)
        if not owns_remote_user(owner, session.subject):
            raise AuthorizationError()

    async def _resolve_user(self, user_id: str) -> Optional[RemoteUser]:
        users = await self.client.get_users(user_id=user_id)
        return next((u for u in users if u.id == user_id), None)

    async def create_key(
        self,
        session,
        *,
        user_id: Optional[str],
        acl_tags: Optional[Sequence[str]] = None,
        expiry_days: int = 90,
        reusable: bool = False,
        ephemeral: bool = False,
    ) -> PreAuthKey:
        tags = normalize_tags(acl_tags)
        if not user_id and not tags:
            raise ValidationError("A user or at least one tag is required")
        if expiry_days < 1:
            raise ValidationError("Expiry must be at least one day")

        await self._check_manage(session, user_id)

        expiration = datetime.now(timezone.utc) + timedelta(days=expiry_days)
        key = await self.client.create_preauth_key(
            user_id=user_id,
            ephemeral=ephemeral,
            reusable=reusable,
            expiration=expiration,
            acl_tags=tags,
        )
        logger.info(
            "preauth.created",
            key_id=key.id,
            user_id=user_id,
            tags=tags,
            reusable=reusable,
            ephemeral=ephemeral,
        )
        return key

    async def expire_key(self, session, *, user_id: str, key: str) -> None:
        if not user_id or not key:
            raise ValidationError("user_id and key are required")
        await self._check_manage(session, user_id)
        await self.client.expire_preauth_key(user_id, key)
        logger.info("preauth.expired", user_id=user_id)
