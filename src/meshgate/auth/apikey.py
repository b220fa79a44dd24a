"""API-key login checks.

Learn: Control-plane API keys look like `<prefix>.<secret>`. We never see
the secret on the server side; the control plane lists its keys with the
prefix only, and newer versions even redact parts of the prefix with `*`
(e.g. "my-***-prefix"). So the local check is:

1. split off the prefix,
2. find the one listed key whose (possibly redacted) prefix matches,
3. make sure it has an expiration and that it hasn't passed.

Whether the secret is right is proven later: the whole credential is the
Bearer token for every remote call this session makes, starting with the
key listing itself.
"""

from datetime import datetime, timezone
from typing import Optional, Sequence

from meshgate.controlplane.models import RemoteApiKey
from meshgate.errors import (
    ApiKeyNotFoundError,
    EmptyCredentialError,
    ExpiredApiKeyError,
    MalformedApiKeyError,
    MissingCredentialError,
)

WILDCARD = "*"


def split_api_key(raw: Optional[str]) -> str:
    """Return the prefix of `<prefix>.<secret>`, validating presence."""
    if raw is None:
        raise MissingCredentialError()
    prefix = raw.partition(".")[0]
    if not prefix.strip():
        raise EmptyCredentialError()
    return prefix


def prefix_matches(stored: str, submitted: str) -> bool:
    """Equal length, and every stored `*` matches any submitted character."""
    if len(stored) != len(submitted):
        return False
    return all(s == WILDCARD or s == c for s, c in zip(stored, submitted))


def match_api_key(keys: Sequence[RemoteApiKey], prefix: str) -> RemoteApiKey:
    """Pick the single listed key for `prefix`."""
    matches = [k for k in keys if prefix_matches(k.prefix, prefix)]
    if not matches:
        raise ApiKeyNotFoundError()
    if len(matches) > 1:
        raise ApiKeyNotFoundError("API key not found: prefix matches more than one key")
    return matches[0]


def check_expiration(key: RemoteApiKey, now: Optional[datetime] = None) -> datetime:
    """Return the key's expiration, or raise if it's missing or past."""
    if key.expiration is None:
        raise MalformedApiKeyError()
    now = now or datetime.now(timezone.utc)
    expiration = key.expiration
    if expiration.tzinfo is None:
        expiration = expiration.replace(tzinfo=timezone.utc)
    if expiration <= now:
        raise ExpiredApiKeyError()
    return expiration
