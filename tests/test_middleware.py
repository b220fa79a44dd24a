"""Tests for middleware — security headers, request IDs, rate-limit paths.

Learn: Rate limiting is skipped in tests (no Redis), so only the path
classification is checked for it.
"""

import pytest

from meshgate.middleware.rate_limit import is_auth_path


@pytest.mark.asyncio
async def test_security_headers_on_health(client):
    r = await client.get("/api/v1/health")
    assert r.status_code == 200
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["Referrer-Policy"] == "no-referrer"
    assert r.headers["Cache-Control"] == "no-store"


@pytest.mark.asyncio
async def test_request_id_generated(client):
    r1 = await client.get("/api/v1/health")
    r2 = await client.get("/api/v1/health")
    assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_propagated(client):
    r = await client.get("/api/v1/health", headers={"X-Request-ID": "trace-12345"})
    assert r.headers["X-Request-ID"] == "trace-12345"


@pytest.mark.asyncio
async def test_no_hsts_on_http(client):
    r = await client.get("/api/v1/health")
    assert "Strict-Transport-Security" not in r.headers


def test_login_routes_use_auth_bucket():
    assert is_auth_path("/api/v1/auth/login")
    assert is_auth_path("/api/v1/auth/oidc/start")
    assert is_auth_path("/api/v1/auth/oidc/callback")
    assert not is_auth_path("/api/v1/auth/me")
    assert not is_auth_path("/api/v1/preauth-keys")
