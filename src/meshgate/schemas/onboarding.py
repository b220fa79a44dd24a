"""Pydantic schemas for first-login onboarding."""

from typing import Optional

from pydantic import BaseModel, Field

from meshgate.controlplane.models import RemoteNode, RemoteUser


class OnboardingState(BaseModel):
    subject: str
    onboarded: bool
    control_plane_url: str
    first_node: Optional[RemoteNode] = None
    users: list[RemoteUser] = []


class RegisterNode(BaseModel):
    node_key: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)


class CreateRemoteUser(BaseModel):
    username: str = Field(..., min_length=1, max_length=63)
