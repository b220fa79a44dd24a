"""Local user administration.

Learn: Roles are written as bitmasks through reassign_subject, which
upserts by subject and only touches `caps`. Owner can't be handed out
here: the owner is whoever bootstrapped first, and only the owner may
change or delete the owner's own record.
"""

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from meshgate.auth.dependencies import CurrentSession, require_capability
from meshgate.auth.roles import (
    OWNER_MASK,
    Capability,
    Role,
    has_capability,
    role_for_bitmask,
)
from meshgate.db.engine import get_db
from meshgate.db.models import User
from meshgate.errors import AuthorizationError, ValidationError
from meshgate.schemas.user import RoleUpdate, UserRead
from meshgate.services.user_service import UserService

logger = structlog.get_logger()

router = APIRouter(prefix="/users")


def _svc(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db)


def _read(user: User) -> UserRead:
    read = UserRead.model_validate(user)
    role = role_for_bitmask(user.caps)
    read.role = role.value if role else None
    return read


async def _guard_owner(svc: UserService, subject: str, current: CurrentSession) -> None:
    target = await svc.get_by_subject(subject)
    if target is not None and target.caps == OWNER_MASK and not has_capability(
        current, Capability.owner
    ):
        logger.warning("users.owner_change_refused", actor=current.subject, subject=subject)
        raise AuthorizationError()


@router.get("", response_model=list[UserRead])
async def list_users(
    _: CurrentSession = Depends(require_capability(Capability.read_users)),
    svc: UserService = Depends(_svc),
):
    return [_read(u) for u in await svc.list_users()]


@router.put("/{subject}/role", response_model=UserRead)
async def assign_role(
    subject: str,
    body: RoleUpdate,
    current: CurrentSession = Depends(require_capability(Capability.configure_iam)),
    svc: UserService = Depends(_svc),
):
    """Give `subject` a role (creates the user record if it doesn't exist)."""
    if body.role is Role.owner:
        raise ValidationError("The owner role cannot be assigned")
    await _guard_owner(svc, subject, current)
    user = await svc.reassign_subject(subject, body.role)
    logger.info("users.role_changed_by", actor=current.subject, subject=subject)
    return _read(user)


@router.delete("/{subject}")
async def delete_user(
    subject: str,
    current: CurrentSession = Depends(require_capability(Capability.configure_iam)),
    svc: UserService = Depends(_svc),
):
    if subject == current.subject:
        raise ValidationError("You cannot delete yourself")
    await _guard_owner(svc, subject, current)
    await svc.delete_user(subject)
    return {"deleted": True}
