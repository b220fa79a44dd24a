"""Pre-auth key API routes.

Learn: Listing needs only ui_access; who may create or expire keys is
decided per key by PreAuthKeyService (any user with generate_authkeys,
only your own remote user with generate_own_authkeys). The listing tells
the UI which of the two applies so it can hide what would be refused.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from meshgate.auth.dependencies import (
    CurrentSession,
    get_control_plane_client,
    require_capability,
)
from meshgate.auth.roles import Capability, has_capability
from meshgate.controlplane.client import ControlPlaneClient
from meshgate.schemas.preauth import (
    PartialFailureRead,
    PreAuthKeyCreate,
    PreAuthKeyExpire,
    PreAuthKeyGroupRead,
    PreAuthKeyListingRead,
    PreAuthKeyRead,
)
from meshgate.services.preauth_service import (
    PreAuthKeyService,
    filter_preauth_keys,
    key_status,
)

router = APIRouter(prefix="/preauth-keys")

_can_manage = require_capability(
    Capability.generate_authkeys, Capability.generate_own_authkeys
)


def _svc(client: ControlPlaneClient = Depends(get_control_plane_client)) -> PreAuthKeyService:
    return PreAuthKeyService(client)


def _key_read(key, now: datetime) -> PreAuthKeyRead:
    return PreAuthKeyRead(**key.model_dump(), status=key_status(key, now))


@router.get("", response_model=PreAuthKeyListingRead, response_model_by_alias=False)
async def list_preauth_keys(
    status: str = "all",
    user: str = "all",
    session: CurrentSession = Depends(require_capability(Capability.ui_access)),
    svc: PreAuthKeyService = Depends(_svc),
):
    """Keys grouped by owner, filtered by `status` and `user`."""
    users = await svc.client.get_users()
    listing = await svc.list_preauth_keys(users)

    now = datetime.now(timezone.utc)
    groups = filter_preauth_keys(listing.groups, status=status, user_filter=user, now=now)

    can_any = has_capability(session, Capability.generate_authkeys)
    can_own = has_capability(session, Capability.generate_own_authkeys)
    return PreAuthKeyListingRead(
        groups=[
            PreAuthKeyGroupRead(
                owner=g.owner, keys=[_key_read(k, now) for k in g.keys]
            )
            for g in groups
        ],
        partial_failures=[
            PartialFailureRead(user=f.user, error=f.error)
            for f in listing.partial_failures
        ],
        users=users,
        can_manage=can_any or can_own,
        self_service_only=can_own and not can_any,
    )


@router.post(
    "", response_model=PreAuthKeyRead, status_code=201, response_model_by_alias=False
)
async def create_preauth_key(
    body: PreAuthKeyCreate,
    session: CurrentSession = Depends(_can_manage),
    svc: PreAuthKeyService = Depends(_svc),
):
    key = await svc.create_key(
        session,
        user_id=body.user_id,
        acl_tags=body.acl_tags,
        expiry_days=body.expiry_days,
        reusable=body.reusable,
        ephemeral=body.ephemeral,
    )
    return _key_read(key, datetime.now(timezone.utc))


@router.post("/expire")
async def expire_preauth_key(
    body: PreAuthKeyExpire,
    session: CurrentSession = Depends(_can_manage),
    svc: PreAuthKeyService = Depends(_svc),
):
    await svc.expire_key(session, user_id=body.user_id, key=body.key)
    return {"expired": True}
