"""Pydantic schemas for pre-auth keys.

Learn: Responses reuse the control-plane models (RemoteUser, PreAuthKey)
and add the computed `status`. Routes set response_model_by_alias=False,
so the API speaks snake_case even though the control plane speaks
camelCase.
"""

from typing import Optional

from pydantic import BaseModel, Field

from meshgate.controlplane.models import PreAuthKey, RemoteUser


class PreAuthKeyRead(PreAuthKey):
    status: str


class PreAuthKeyGroupRead(BaseModel):
    owner: Optional[RemoteUser] = None
    keys: list[PreAuthKeyRead]


class PartialFailureRead(BaseModel):
    user: RemoteUser
    error: str


class PreAuthKeyListingRead(BaseModel):
    groups: list[PreAuthKeyGroupRead]
    partial_failures: list[PartialFailureRead]
    users: list[RemoteUser]
    can_manage: bool
    self_service_only: bool


class PreAuthKeyCreate(BaseModel):
    user_id: Optional[str] = None
    acl_tags: list[str] = Field(default_factory=list)
    expiry_days: int = Field(default=90, ge=1, le=3650)
    reusable: bool = False
    ephemeral: bool = False


class PreAuthKeyExpire(BaseModel):
    user_id: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)
