"""Async REST client for the control-plane API.

Learn: Two layers, mirroring how credentials work:

- ControlPlane: one per process. Owns the httpx connection pool and what
  we've learned about the server (does it have the bulk pre-auth key
  listing?). Initialized in the app lifespan.
- ControlPlaneClient: one per request, bound to the session's credential.
  Every call sends it as a Bearer token, so the control plane itself is
  the final judge of whether the credential is valid.

Every transport problem (timeout, refused connection, non-2xx) and every
body we can't parse becomes a single ControlPlaneError. Nothing here
retries.
"""

from datetime import datetime
from typing import Any, Optional

import httpx
import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from meshgate.config import settings
from meshgate.controlplane.models import (
    PreAuthKey,
    RemoteApiKey,
    RemoteNode,
    RemoteUser,
)

logger = structlog.get_logger()

# Statuses an older server answers for GET /preauthkey without ?user=.
UNSUPPORTED_STATUSES = frozenset({400, 404, 405, 501})


class ControlPlaneError(Exception):
    """Any failed call to the control plane."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ControlPlaneAuthError(ControlPlaneError):
    """The control plane rejected the bearer credential (401/403)."""


class UnsupportedEndpointError(ControlPlaneError):
    """The server version doesn't have this endpoint."""


# Shape errors a 200 response can still produce.
_PARSE_ERRORS = (PydanticValidationError, AttributeError, KeyError, TypeError)


def _parse_one(model: type[BaseModel], data: Any, key: str, what: str):
    try:
        return model.model_validate(data[key])
    except _PARSE_ERRORS as e:
        raise ControlPlaneError(f"{what} returned an unexpected body") from e


def _parse_list(model: type[BaseModel], data: Any, key: str, what: str) -> list:
    try:
        return [model.model_validate(item) for item in data.get(key) or []]
    except _PARSE_ERRORS as e:
        raise ControlPlaneError(f"{what} returned an unexpected body") from e


class ControlPlane:
    """Process-wide control-plane interface."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )
        # None = not probed yet; set by the first bulk listing attempt.
        self.supports_bulk_preauth_keys: Optional[bool] = None

    def runtime(self, api_key: str) -> "ControlPlaneClient":
        """Client bound to one credential."""
        return ControlPlaneClient(self, api_key)

    async def aclose(self) -> None:
        await self.http.aclose()


class ControlPlaneClient:
    """Control-plane calls made with one session's credential."""

    def __init__(self, interface: ControlPlane, api_key: str):
        self.interface = interface
        self._api_key = api_key

    def __repr__(self) -> str:
        # Never render the credential.
        return f"<ControlPlaneClient {self.interface.base_url}>"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        try:
            resp = await self.interface.http.request(
                method,
                f"/api/v1{path}",
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as e:
            raise ControlPlaneError(
                f"{method} {path} failed: {type(e).__name__}"
            ) from e

        if resp.status_code in (401, 403):
            raise ControlPlaneAuthError(
                f"{method} {path} rejected credential", resp.status_code
            )
        if resp.status_code >= 400:
            raise ControlPlaneError(
                f"{method} {path} returned {resp.status_code}: {resp.text[:200]}",
                resp.status_code,
            )
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise ControlPlaneError(f"{method} {path} returned invalid JSON") from e

    # ─── Users ─────────────────────────────────────────────

    async def get_users(self, user_id: Optional[str] = None) -> list[RemoteUser]:
        params = {"id": user_id} if user_id else None
        data = await self._request("GET", "/user", params=params)
        return _parse_list(RemoteUser, data, "users", "GET /user")

    async def create_user(
        self,
        name: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
        picture: Optional[str] = None,
    ) -> RemoteUser:
        body: dict[str, Any] = {"name": name}
        if email:
            body["email"] = email
        if display_name:
            body["displayName"] = display_name
        if picture:
            body["pictureUrl"] = picture
        data = await self._request("POST", "/user", json=body)
        return _parse_one(RemoteUser, data, "user", "POST /user")

    # ─── API keys ──────────────────────────────────────────

    async def get_api_keys(self) -> list[RemoteApiKey]:
        data = await self._request("GET", "/apikey")
        return _parse_list(RemoteApiKey, data, "apiKeys", "GET /apikey")

    # ─── Pre-auth keys ─────────────────────────────────────

    async def get_all_preauth_keys(self) -> list[PreAuthKey]:
        """List every pre-auth key in one call (newer servers only).

        Raises UnsupportedEndpointError when the server is known not to
        have the endpoint; that answer is cached on the interface so later
        calls don't hit the network at all.
        """
        if self.interface.supports_bulk_preauth_keys is False:
            raise UnsupportedEndpointError("bulk pre-auth key listing unsupported")
        try:
            data = await self._request("GET", "/preauthkey")
        except ControlPlaneAuthError:
            raise
        except ControlPlaneError as e:
            if e.status_code in UNSUPPORTED_STATUSES:
                self.interface.supports_bulk_preauth_keys = False
                logger.info(
                    "controlplane.bulk_preauth_keys_unsupported",
                    status=e.status_code,
                )
                raise UnsupportedEndpointError(str(e), e.status_code) from e
            raise
        self.interface.supports_bulk_preauth_keys = True
        return _parse_list(PreAuthKey, data, "preAuthKeys", "GET /preauthkey")

    async def get_preauth_keys(self, user_id: str) -> list[PreAuthKey]:
        data = await self._request("GET", "/preauthkey", params={"user": user_id})
        return _parse_list(PreAuthKey, data, "preAuthKeys", "GET /preauthkey")

    async def create_preauth_key(
        self,
        user_id: Optional[str],
        ephemeral: bool,
        reusable: bool,
        expiration: datetime,
        acl_tags: Optional[list[str]] = None,
    ) -> PreAuthKey:
        body: dict[str, Any] = {
            "reusable": reusable,
            "ephemeral": ephemeral,
            "expiration": expiration.isoformat(),
        }
        if user_id:
            body["user"] = user_id
        if acl_tags:
            body["aclTags"] = acl_tags
        data = await self._request("POST", "/preauthkey", json=body)
        return _parse_one(PreAuthKey, data, "preAuthKey", "POST /preauthkey")

    async def expire_preauth_key(self, user_id: str, key: str) -> None:
        await self._request(
            "POST", "/preauthkey/expire", json={"user": user_id, "key": key}
        )

    # ─── Nodes ─────────────────────────────────────────────

    async def get_nodes(self) -> list[RemoteNode]:
        data = await self._request("GET", "/node")
        return _parse_list(RemoteNode, data, "nodes", "GET /node")

    async def register_node(self, user_id: str, node_key: str) -> RemoteNode:
        data = await self._request(
            "POST", "/node/register", params={"user": user_id, "key": node_key}
        )
        return _parse_one(RemoteNode, data, "node", "POST /node/register")


# ─── Process-wide interface ───────────────────────────────

# Initialized in lifespan, like the Redis pool.
_control_plane: Optional[ControlPlane] = None


async def init_control_plane() -> ControlPlane:
    global _control_plane
    _control_plane = ControlPlane(
        settings.control_plane_url,
        timeout=settings.control_plane_timeout_seconds,
    )
    return _control_plane


async def close_control_plane() -> None:
    global _control_plane
    if _control_plane:
        await _control_plane.aclose()
        _control_plane = None


def get_control_plane() -> ControlPlane:
    """FastAPI dependency — the process-wide interface (must be initialized)."""
    if _control_plane is None:
        raise RuntimeError("Control plane not initialized. Call init_control_plane() first.")
    return _control_plane
