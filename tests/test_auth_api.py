"""Auth API tests — API-key login, sessions, logout, /me.

Learn: Tests cover:
1. Login with a control-plane key → session token + cookie
2. Each rejection maps to 401 with its message, and nothing is stored
3. The session token drives /me, and logout revokes it server-side
4. Capabilities are read per request for OIDC sessions
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from meshgate.auth.roles import Capability, Role
from meshgate.config import settings

IN_A_MONTH = datetime.now(timezone.utc) + timedelta(days=30)


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ═══════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_login_success_sets_cookie(client, fake_cp):
    fake_cp.add_api_key("adminkey", IN_A_MONTH)

    r = await client.post("/api/v1/auth/login", json={"api_key": "adminkey.s3cret"})
    assert r.status_code == 200
    data = r.json()
    assert data["kind"] == "api_key"
    assert data["subject"] == "api-key:adminkey"
    assert settings.session_cookie_name in r.cookies
    # The raw credential never comes back.
    assert "s3cret" not in r.text


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body, message",
    [
        ({}, "Missing API key"),
        ({"api_key": ""}, "API key cannot be empty"),
        ({"api_key": "unknown.key"}, "API key not found"),
    ],
)
async def test_login_rejections(client, fake_cp, body, message):
    fake_cp.add_api_key("adminkey", IN_A_MONTH)
    r = await client.post("/api/v1/auth/login", json=body)
    assert r.status_code == 401
    assert r.json()["detail"] == message


@pytest.mark.asyncio
async def test_login_expired_key(client, fake_cp):
    fake_cp.add_api_key("adminkey", datetime.now(timezone.utc) - timedelta(days=1))
    r = await client.post("/api/v1/auth/login", json={"api_key": "adminkey.s3cret"})
    assert r.status_code == 401
    assert r.json()["detail"] == "API key has expired"


# ═══════════════════════════════════════════════════════════
# Session use
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_me_with_api_key_session(client, fake_cp):
    fake_cp.add_api_key("adminkey", IN_A_MONTH)
    login = await client.post("/api/v1/auth/login", json={"api_key": "adminkey.s3cret"})

    r = await client.get("/api/v1/auth/me", headers=_bearer(login.json()["token"]))
    assert r.status_code == 200
    me = r.json()
    assert me["role"] == "owner"
    assert "owner" in me["capabilities"]


@pytest.mark.asyncio
async def test_me_with_cookie(client, fake_cp):
    fake_cp.add_api_key("adminkey", IN_A_MONTH)
    await client.post("/api/v1/auth/login", json={"api_key": "adminkey.s3cret"})

    # AsyncClient keeps the session cookie from the login response.
    r = await client.get("/api/v1/auth/me")
    assert r.status_code == 200
    assert r.json()["kind"] == "api_key"


@pytest.mark.asyncio
async def test_me_without_session(client):
    r = await client.get("/api/v1/auth/me")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_me_with_garbage_token(client):
    r = await client.get("/api/v1/auth/me", headers=_bearer("not-a-jwt"))
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_logout_revokes_session(client, fake_cp):
    fake_cp.add_api_key("adminkey", IN_A_MONTH)
    login = await client.post("/api/v1/auth/login", json={"api_key": "adminkey.s3cret"})
    headers = _bearer(login.json()["token"])

    r = await client.post("/api/v1/auth/logout", headers=headers)
    assert r.status_code == 200

    client.cookies.clear()
    r = await client.get("/api/v1/auth/me", headers=headers)
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_role_change_applies_to_live_session(client, login_as):
    headers = await login_as("sub-bob", Role.auditor)
    r = await client.get("/api/v1/auth/me", headers=headers)
    assert r.json()["role"] == "auditor"

    admin = await login_as("sub-root", Role.admin)
    r = await client.put(
        "/api/v1/users/sub-bob/role", json={"role": "member"}, headers=admin
    )
    assert r.status_code == 200

    r = await client.get("/api/v1/auth/me", headers=headers)
    assert r.json()["role"] == "member"
    assert r.json()["capabilities"] == []


@pytest.mark.asyncio
async def test_session_of_deleted_user_rejected(client, login_as):
    headers = await login_as("sub-ghost", role=None)
    r = await client.get("/api/v1/auth/me", headers=headers)
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_forbidden_body_is_generic(client, login_as):
    headers = await login_as("sub-bob", Role.member)
    r = await client.get("/api/v1/users", headers=headers)
    assert r.status_code == 403
    assert r.json() == {"detail": "Forbidden"}
    assert Capability.read_users.name not in r.text


# ═══════════════════════════════════════════════════════════
# OIDC
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_oidc_disabled_returns_404(client):
    r = await client.get("/api/v1/auth/oidc/start", follow_redirects=False)
    assert r.status_code == 404


class FakeProvider:
    """Stands in for OidcProvider; asserts the flow cookie round-trips."""

    def __init__(self, subject: str):
        self.subject = subject
        self.completed_with = None

    async def authorization_url(self, state, nonce, code_challenge):
        return f"https://idp.test/authorize?state={state}&nonce={nonce}"

    async def complete(self, code, code_verifier, nonce):
        from meshgate.auth.oidc import OidcIdentity

        self.completed_with = (code, code_verifier, nonce)
        return OidcIdentity(subject=self.subject, email="alice@example.com", name="Alice")


@pytest.fixture
def oidc_provider(oidc_service_key):
    from meshgate.auth.oidc import get_oidc_provider
    from meshgate.main import app

    provider = FakeProvider("sub-alice")
    app.dependency_overrides[get_oidc_provider] = lambda: provider
    return provider


@pytest.mark.asyncio
async def test_oidc_flow_first_login_is_owner(client, fake_cp, oidc_provider):
    fake_cp.add_user("2", "alice", provider_id="https://idp/oidc/sub-alice")

    start = await client.get("/api/v1/auth/oidc/start", follow_redirects=False)
    assert start.status_code == 302
    location = httpx.URL(start.headers["location"])
    state = location.params["state"]

    cb = await client.get(
        "/api/v1/auth/oidc/callback",
        params={"code": "abc", "state": state},
        follow_redirects=False,
    )
    assert cb.status_code == 302
    assert cb.headers["location"] == "/onboarding"
    code, verifier, nonce = oidc_provider.completed_with
    assert code == "abc"
    assert nonce == location.params["nonce"]

    me = (await client.get("/api/v1/auth/me")).json()
    assert me["kind"] == "oidc"
    assert me["subject"] == "sub-alice"
    assert me["role"] == "owner"
    assert me["email"] == "alice@example.com"

    users = await client.get("/api/v1/users")
    assert users.json()[0]["remote_user_id"] == "2"


@pytest.mark.asyncio
async def test_oidc_callback_state_mismatch(client, oidc_provider):
    await client.get("/api/v1/auth/oidc/start", follow_redirects=False)
    r = await client.get(
        "/api/v1/auth/oidc/callback",
        params={"code": "abc", "state": "forged"},
        follow_redirects=False,
    )
    assert r.status_code == 401
    assert oidc_provider.completed_with is None


@pytest.mark.asyncio
async def test_oidc_callback_without_flow_cookie(client, oidc_provider):
    r = await client.get(
        "/api/v1/auth/oidc/callback",
        params={"code": "abc", "state": "s"},
        follow_redirects=False,
    )
    assert r.status_code == 401
