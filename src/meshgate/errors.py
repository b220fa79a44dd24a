"""Error taxonomy shared by services and routes.

Learn: Services raise these; the app factory maps each family to one
HTTP status (see main.register_exception_handlers). Routes don't catch
them one by one.

- ValidationError      → 400, nothing written
- AuthenticationError  → 401, no session created
- AuthorizationError   → 403, always the same "Forbidden" body
- ControlPlaneError    → 502 (lives in meshgate.controlplane.client)
"""


class MeshgateError(Exception):
    """Base for all expected, user-reportable failures."""


class ValidationError(MeshgateError):
    """A required field is missing or empty."""


class NotFoundError(MeshgateError):
    """A referenced local or remote object does not exist."""


# ─── Authentication ─────────────────────────────────────


class AuthenticationError(MeshgateError):
    """Credentials were rejected. No session is created."""


class MissingCredentialError(AuthenticationError):
    def __init__(self, message: str = "Missing API key"):
        super().__init__(message)


class EmptyCredentialError(AuthenticationError):
    def __init__(self, message: str = "API key cannot be empty"):
        super().__init__(message)


class ApiKeyNotFoundError(AuthenticationError):
    def __init__(self, message: str = "API key not found"):
        super().__init__(message)


class ExpiredApiKeyError(AuthenticationError):
    def __init__(self, message: str = "API key has expired"):
        super().__init__(message)


class MalformedApiKeyError(AuthenticationError):
    def __init__(self, message: str = "API key is malformed: it has no expiration"):
        super().__init__(message)


class SessionError(AuthenticationError):
    """Session token missing, invalid, expired or revoked."""


# ─── Authorization ──────────────────────────────────────


class AuthorizationError(MeshgateError):
    """The session lacks a capability.

    The message is fixed. Responses never name the capability that
    was checked.
    """

    def __init__(self):
        super().__init__("Forbidden")
