"""Pydantic schemas for local users and role assignment."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from meshgate.auth.roles import Role


class UserRead(BaseModel):
    id: uuid.UUID
    sub: str
    caps: int
    role: Optional[str] = None
    onboarded: bool
    remote_user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RoleUpdate(BaseModel):
    role: Role
