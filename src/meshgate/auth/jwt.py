"""Signed tokens: session tokens and OIDC flow state.

Learn: The session token is a JWT that only names a server-side session
row (`sid`). Revoking a session is deleting the row; the token then fails
lookup even though its signature and `exp` are still fine.

The OIDC flow token carries state, nonce and the PKCE verifier between
/oidc/start and /oidc/callback in a short-lived cookie, so no server-side
storage is needed for half-finished logins.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from meshgate.config import settings


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def create_session_token(session_id: str, subject: str, expires_at: datetime) -> str:
    """Create a session JWT that expires with the session."""
    payload = {
        "sid": session_id,
        "sub": subject,
        "type": "session",
        "exp": expires_at,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_flow_token(
    state: str,
    nonce: str,
    code_verifier: str,
    expires_minutes: Optional[int] = None,
) -> str:
    """Create the short-lived OIDC login flow token."""
    expires = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or 10)
    payload = {
        "state": state,
        "nonce": nonce,
        "verifier": code_verifier,
        "type": "oidc_flow",
        "exp": expires,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str, expected_type: str) -> dict:
    """Verify and decode a token of the given type.

    Returns the payload dict on success.
    Raises TokenError on failure.
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")
    if payload.get("type") != expected_type:
        raise TokenError(f"Not a {expected_type} token")
    return payload
