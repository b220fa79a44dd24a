"""Pydantic models for control-plane API objects.

Learn: The control plane speaks camelCase JSON (providerId, aclTags,
createdAt...). Aliases map that onto snake_case attributes; populate_by_name
lets tests build objects with the Python names directly. Unknown fields
are ignored so newer servers don't break parsing.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RemoteModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RemoteUser(RemoteModel):
    id: str
    name: str
    display_name: Optional[str] = Field(None, alias="displayName")
    email: Optional[str] = None
    provider: Optional[str] = None
    provider_id: Optional[str] = Field(None, alias="providerId")
    profile_pic_url: Optional[str] = Field(None, alias="profilePicUrl")
    created_at: Optional[datetime] = Field(None, alias="createdAt")


class RemoteApiKey(RemoteModel):
    id: Optional[str] = None
    prefix: str
    expiration: Optional[datetime] = None
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    last_seen: Optional[datetime] = Field(None, alias="lastSeen")


class PreAuthKey(RemoteModel):
    id: str
    key: str
    user: Optional[RemoteUser] = None  # None ⇒ tag-only key
    reusable: bool = False
    ephemeral: bool = False
    used: bool = False
    expiration: Optional[datetime] = None
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    acl_tags: list[str] = Field(default_factory=list, alias="aclTags")

    @property
    def owner_id(self) -> Optional[str]:
        return self.user.id if self.user else None


class RemoteNode(RemoteModel):
    id: str
    name: str
    given_name: Optional[str] = Field(None, alias="givenName")
    user: Optional[RemoteUser] = None
    online: bool = False
    ip_addresses: list[str] = Field(default_factory=list, alias="ipAddresses")
