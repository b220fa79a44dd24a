"""Onboarding API — the first-login walkthrough.

Learn: A fresh OIDC user needs a device on the mesh. The walkthrough
shows the `up` command for the control plane, lets the user register a
node key against a remote user, and watches for the first node that
belongs to the remote user linked to their own subject. Remote failures
never block the page; they just leave parts of it empty.

No capability gate beyond a session: the control plane itself checks
the session's credential on register and create.
"""

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from meshgate.auth.dependencies import (
    CurrentSession,
    get_control_plane_client,
    get_current_session,
)
from meshgate.auth.linking import owns_remote_user
from meshgate.config import settings
from meshgate.controlplane.client import ControlPlaneClient, ControlPlaneError
from meshgate.controlplane.models import RemoteNode, RemoteUser
from meshgate.db.engine import get_db
from meshgate.schemas.onboarding import CreateRemoteUser, OnboardingState, RegisterNode
from meshgate.services.user_service import UserService

logger = structlog.get_logger()

router = APIRouter(prefix="/onboarding")


@router.get("", response_model=OnboardingState, response_model_by_alias=False)
async def get_onboarding(
    current: CurrentSession = Depends(get_current_session),
    client: ControlPlaneClient = Depends(get_control_plane_client),
):
    first_node = None
    try:
        nodes = await client.get_nodes()
        first_node = next(
            (
                n for n in nodes
                if n.user is not None
                and n.user.provider == "oidc"
                and owns_remote_user(n.user, current.subject)
            ),
            None,
        )
    except ControlPlaneError as e:
        logger.warning("onboarding.nodes_unavailable", error=str(e))

    users: list[RemoteUser] = []
    try:
        users = await client.get_users()
    except ControlPlaneError as e:
        logger.warning("onboarding.users_unavailable", error=str(e))

    return OnboardingState(
        subject=current.subject,
        onboarded=current.onboarded,
        control_plane_url=settings.control_plane_public_url or settings.control_plane_url,
        first_node=first_node,
        users=users,
    )


@router.post(
    "/register-node",
    response_model=RemoteNode,
    status_code=201,
    response_model_by_alias=False,
)
async def register_node(
    body: RegisterNode,
    _: CurrentSession = Depends(get_current_session),
    client: ControlPlaneClient = Depends(get_control_plane_client),
):
    node = await client.register_node(body.user_id, body.node_key.strip())
    logger.info("onboarding.node_registered", node_id=node.id, user_id=body.user_id)
    return node


@router.post(
    "/create-user",
    response_model=RemoteUser,
    status_code=201,
    response_model_by_alias=False,
)
async def create_remote_user(
    body: CreateRemoteUser,
    current: CurrentSession = Depends(get_current_session),
    client: ControlPlaneClient = Depends(get_control_plane_client),
):
    """Create a control-plane user carrying the session's profile."""
    user = await client.create_user(
        name=body.username.strip(),
        email=current.email,
        display_name=current.name,
        picture=current.picture,
    )
    logger.info("onboarding.user_created", remote_user_id=user.id)
    return user


@router.post("/complete")
async def complete_onboarding(
    current: CurrentSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    """Mark the session's user as onboarded (no-op for API-key sessions)."""
    if current.kind == "oidc":
        await UserService(db).mark_onboarded(current.subject)
    return {"onboarded": True}
