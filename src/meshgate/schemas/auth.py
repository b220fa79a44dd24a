"""Pydantic schemas for login and the current session."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ApiKeyLogin(BaseModel):
    # Optional so a missing key reaches the authenticator ("Missing API key")
    # instead of failing request validation.
    api_key: Optional[str] = None


class SessionCreated(BaseModel):
    token: str
    token_type: str = "bearer"
    kind: str
    subject: str
    expires_at: datetime


class SessionRead(BaseModel):
    kind: str
    subject: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None
    role: Optional[str] = None  # None for a custom bitmask
    capabilities: list[str]
    onboarded: bool
