"""Matching OIDC subjects to control-plane users.

Learn: When the control plane itself uses OIDC, each of its users carries
a providerId shaped like a URL whose last path segment is the OIDC
subject ("https://issuer.example.com/oidc/abc123"). That last segment is
the only link between our local users (keyed by subject) and the
control plane's users (keyed by their own ids).
"""

from typing import Iterable, Optional

from meshgate.controlplane.models import RemoteUser


def extract_subject(provider_id: Optional[str]) -> Optional[str]:
    """Subject embedded in a providerId: everything after the last "/".

    >>> extract_subject("oidc/abc123")
    'abc123'
    >>> extract_subject("oidc/")
    ''
    """
    if provider_id is None:
        return None
    return provider_id.rsplit("/", 1)[-1]


def find_remote_user(
    users: Iterable[RemoteUser], subject: str
) -> Optional[RemoteUser]:
    """First remote user (in listing order) whose linking key is `subject`."""
    for user in users:
        if extract_subject(user.provider_id) == subject:
            return user
    return None


def owns_remote_user(user: Optional[RemoteUser], subject: str) -> bool:
    """Whether `subject` is the OIDC identity behind a remote user."""
    return bool(subject) and user is not None and extract_subject(user.provider_id) == subject
