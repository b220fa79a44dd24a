"""OpenID Connect provider client (authorization code flow with PKCE).

Learn: The flow has two legs.

1. /oidc/start: discover the provider, generate state + nonce + PKCE
   verifier, redirect the browser to the authorization endpoint.
2. /oidc/callback: exchange the code at the token endpoint, validate the
   ID token signature against the provider's JWKS (PyJWT's PyJWKClient),
   check the nonce, and read subject/email/name/picture from the claims,
   falling back to the userinfo endpoint for missing profile fields.

What happens after that (local user upsert, owner bootstrap, control-plane
linking) is LoginService.complete_oidc_login.
"""

import asyncio
import base64
import hashlib
import secrets
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
import jwt
import structlog

from meshgate.config import settings

logger = structlog.get_logger()


class OidcDiscoveryError(RuntimeError):
    pass


class OidcTokenValidationError(RuntimeError):
    pass


@dataclass(frozen=True)
class ProviderMetadata:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    userinfo_endpoint: Optional[str] = None


@dataclass(frozen=True)
class OidcIdentity:
    """What the identity provider asserts about a logged-in principal."""

    subject: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None


def new_pkce_pair() -> tuple[str, str]:
    """(code_verifier, S256 code_challenge)."""
    verifier = secrets.token_urlsafe(48)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def identity_from_claims(
    claims: dict[str, Any], userinfo: Optional[dict[str, Any]] = None
) -> OidcIdentity:
    """Build an identity from ID-token claims, filling gaps from userinfo."""
    merged = dict(userinfo or {})
    merged.update({k: v for k, v in claims.items() if v is not None})

    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise OidcTokenValidationError("ID token has no subject")

    name = merged.get("name") or merged.get("preferred_username")
    return OidcIdentity(
        subject=subject,
        email=merged.get("email"),
        name=name,
        picture=merged.get("picture"),
    )


class OidcProvider:
    """Client for one OIDC provider. Metadata and JWKS are fetched once."""

    def __init__(
        self,
        issuer: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: list[str],
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.issuer = issuer.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes
        self.http = http or httpx.AsyncClient(timeout=10.0)
        self._meta: Optional[ProviderMetadata] = None
        self._jwks_client: Optional[jwt.PyJWKClient] = None

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _get_json(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        try:
            resp = await self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise OidcDiscoveryError(f"failed to call {url}: {type(e).__name__}") from e
        if resp.status_code >= 400:
            raise OidcDiscoveryError(f"HTTP {resp.status_code} from {url}")
        try:
            obj = resp.json()
        except ValueError as e:
            raise OidcDiscoveryError(f"invalid JSON from {url}") from e
        if not isinstance(obj, dict):
            raise OidcDiscoveryError(f"invalid JSON shape from {url}")
        return obj

    async def metadata(self) -> ProviderMetadata:
        if self._meta is not None:
            return self._meta

        doc = await self._get_json(
            "GET", f"{self.issuer}/.well-known/openid-configuration"
        )
        required = ("issuer", "authorization_endpoint", "token_endpoint", "jwks_uri")
        for field in required:
            if not isinstance(doc.get(field), str) or not doc[field]:
                raise OidcDiscoveryError(f"discovery missing {field}")

        self._meta = ProviderMetadata(
            issuer=doc["issuer"],
            authorization_endpoint=doc["authorization_endpoint"],
            token_endpoint=doc["token_endpoint"],
            jwks_uri=doc["jwks_uri"],
            userinfo_endpoint=doc.get("userinfo_endpoint"),
        )
        return self._meta

    async def authorization_url(self, state: str, nonce: str, code_challenge: str) -> str:
        meta = await self.metadata()
        query = urlencode({
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "state": state,
            "nonce": nonce,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        })
        return f"{meta.authorization_endpoint}?{query}"

    async def exchange_code(self, code: str, code_verifier: str) -> dict[str, Any]:
        meta = await self.metadata()
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "code_verifier": code_verifier,
        }
        if self.client_secret:
            form["client_secret"] = self.client_secret
        tokens = await self._get_json(
            "POST",
            meta.token_endpoint,
            data=form,
            headers={"Accept": "application/json"},
        )
        if not isinstance(tokens.get("id_token"), str):
            raise OidcTokenValidationError("token endpoint did not return an id_token")
        return tokens

    async def validate_id_token(self, id_token: str, nonce: str) -> dict[str, Any]:
        meta = await self.metadata()
        if self._jwks_client is None:
            self._jwks_client = jwt.PyJWKClient(meta.jwks_uri)

        # PyJWKClient does blocking I/O.
        try:
            signing_key = await asyncio.to_thread(
                self._jwks_client.get_signing_key_from_jwt, id_token
            )
        except (jwt.PyJWKClientError, jwt.InvalidTokenError) as e:
            raise OidcTokenValidationError(
                f"unable to resolve signing key: {type(e).__name__}"
            ) from e

        try:
            claims = jwt.decode(
                id_token,
                signing_key.key,
                algorithms=["RS256", "ES256", "PS256"],
                audience=self.client_id,
                issuer=meta.issuer,
                leeway=30,
            )
        except jwt.InvalidTokenError as e:
            raise OidcTokenValidationError(f"invalid ID token: {type(e).__name__}") from e

        if claims.get("nonce") != nonce:
            raise OidcTokenValidationError("ID token nonce mismatch")
        return claims

    async def userinfo(self, access_token: str) -> dict[str, Any]:
        meta = await self.metadata()
        if not meta.userinfo_endpoint:
            return {}
        return await self._get_json(
            "GET",
            meta.userinfo_endpoint,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    async def complete(self, code: str, code_verifier: str, nonce: str) -> OidcIdentity:
        """Run the callback leg and return the asserted identity."""
        tokens = await self.exchange_code(code, code_verifier)
        claims = await self.validate_id_token(tokens["id_token"], nonce)

        info: dict[str, Any] = {}
        missing_profile = not all(claims.get(k) for k in ("email", "name", "picture"))
        if missing_profile and isinstance(tokens.get("access_token"), str):
            try:
                info = await self.userinfo(tokens["access_token"])
            except OidcDiscoveryError as e:
                logger.warning("oidc.userinfo_failed", error=str(e))

        return identity_from_claims(claims, info)


# ─── Process-wide provider ────────────────────────────────

_provider: Optional[OidcProvider] = None


def init_oidc_provider() -> Optional[OidcProvider]:
    """Create the provider if OIDC is configured. Discovery is lazy."""
    global _provider
    if settings.oidc_enabled:
        _provider = OidcProvider(
            issuer=settings.oidc_issuer,
            client_id=settings.oidc_client_id,
            client_secret=settings.oidc_client_secret,
            redirect_uri=settings.oidc_redirect_uri,
            scopes=settings.oidc_scopes,
        )
    return _provider


async def close_oidc_provider() -> None:
    global _provider
    if _provider:
        await _provider.aclose()
        _provider = None


def get_oidc_provider() -> Optional[OidcProvider]:
    """FastAPI dependency — None when OIDC is disabled."""
    return _provider
