"""Test fixtures — a fresh SQLite database and a fake control plane per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI + httpx:

1. Each test gets its own SQLite file (aiosqlite) with the schema created
   from the ORM models, so commits are real and nothing leaks between tests.
2. The control plane is an in-memory fake served through
   httpx.MockTransport, so the real ControlPlane/ControlPlaneClient code
   (headers, paths, error mapping) runs in every test.
3. The app's get_db and get_control_plane dependencies are overridden;
   sessions are real, created through the real login flow or the
   `login_as` helper.
"""

import json
import os

os.environ["MESHGATE_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["MESHGATE_ENVIRONMENT"] = "development"

from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Optional  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from meshgate.auth.jwt import create_session_token  # noqa: E402
from meshgate.auth.oidc import get_oidc_provider  # noqa: E402
from meshgate.auth.roles import Role  # noqa: E402
from meshgate.config import settings  # noqa: E402
from meshgate.controlplane.client import ControlPlane, get_control_plane  # noqa: E402
from meshgate.db.engine import get_db  # noqa: E402
from meshgate.db.models import Base  # noqa: E402
from meshgate.main import app  # noqa: E402
from meshgate.services.session_service import SessionService  # noqa: E402
from meshgate.services.user_service import UserService  # noqa: E402

ADMIN_KEY = "adminkey.s3cret"
OIDC_SERVICE_KEY = "svc.oidc-service-secret"


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


class FakeControlPlane:
    """In-memory control-plane REST API.

    State is plain camelCase dicts, the way the real server sends it.
    Only bearer tokens in `credentials` are accepted.
    """

    def __init__(self):
        self.users: list[dict] = []
        self.api_keys: list[dict] = []
        self.preauth_keys: list[dict] = []
        self.nodes: list[dict] = []
        self.credentials: set[str] = {ADMIN_KEY, OIDC_SERVICE_KEY}
        # None ⇒ bulk listing works; otherwise the status it answers with.
        self.bulk_status: Optional[int] = None
        self.failing_users: set[str] = set()
        self.users_status: Optional[int] = None
        # Raw JSON answered instead of the real listing (a server we can't parse).
        self.bulk_body = None
        self.users_body = None
        self.requests: list[httpx.Request] = []
        self._next_id = 100

    # ─── Seeding ─────────────────────────────────────────

    def add_user(
        self,
        user_id: str,
        name: str,
        provider_id: Optional[str] = None,
        provider: str = "oidc",
    ) -> dict:
        user = {"id": user_id, "name": name, "provider": provider}
        if provider_id is not None:
            user["providerId"] = provider_id
        self.users.append(user)
        return user

    def add_api_key(self, prefix: str, expiration: Optional[datetime]) -> dict:
        key = {"id": str(len(self.api_keys) + 1), "prefix": prefix}
        if expiration is not None:
            key["expiration"] = _iso(expiration)
        self.api_keys.append(key)
        return key

    def add_preauth_key(
        self,
        key_id: str,
        user_id: Optional[str] = None,
        *,
        used: bool = False,
        reusable: bool = False,
        ephemeral: bool = False,
        expiration: Optional[datetime] = None,
        acl_tags: Optional[list[str]] = None,
    ) -> dict:
        key = {
            "id": key_id,
            "key": f"pak-{key_id}",
            "used": used,
            "reusable": reusable,
            "ephemeral": ephemeral,
            "aclTags": acl_tags or [],
        }
        if user_id is not None:
            key["user"] = self._user(user_id)
        if expiration is not None:
            key["expiration"] = _iso(expiration)
        self.preauth_keys.append(key)
        return key

    def add_node(self, node_id: str, name: str, user_id: Optional[str]) -> dict:
        node = {"id": node_id, "name": name, "online": True}
        if user_id is not None:
            node["user"] = self._user(user_id)
        self.nodes.append(node)
        return node

    def _user(self, user_id: str) -> dict:
        return next(u for u in self.users if u["id"] == user_id)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and r.url.path == f"/api/v1{path}"
        ]

    # ─── Transport ───────────────────────────────────────

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if token not in self.credentials:
            return httpx.Response(401, json={"message": "Unauthorized"})

        path = request.url.path.removeprefix("/api/v1")
        params = request.url.params
        method = request.method

        if method == "GET" and path == "/user":
            if self.users_status:
                return httpx.Response(self.users_status, text="boom")
            if self.users_body is not None:
                return httpx.Response(200, json=self.users_body)
            users = self.users
            if params.get("id"):
                users = [u for u in users if u["id"] == params["id"]]
            return httpx.Response(200, json={"users": users})

        if method == "POST" and path == "/user":
            data = json.loads(request.content)
            self._next_id += 1
            user = {
                "id": str(self._next_id),
                "name": data["name"],
                "email": data.get("email"),
                "displayName": data.get("displayName"),
                "profilePicUrl": data.get("pictureUrl"),
            }
            self.users.append(user)
            return httpx.Response(200, json={"user": user})

        if method == "GET" and path == "/apikey":
            return httpx.Response(200, json={"apiKeys": self.api_keys})

        if method == "GET" and path == "/preauthkey":
            user_id = params.get("user")
            if user_id is None:
                if self.bulk_status:
                    return httpx.Response(self.bulk_status, text="no")
                if self.bulk_body is not None:
                    return httpx.Response(200, json=self.bulk_body)
                return httpx.Response(200, json={"preAuthKeys": self.preauth_keys})
            if user_id in self.failing_users:
                return httpx.Response(500, text="internal error")
            keys = [
                k for k in self.preauth_keys
                if k.get("user", {}).get("id") == user_id
            ]
            return httpx.Response(200, json={"preAuthKeys": keys})

        if method == "POST" and path == "/preauthkey":
            data = json.loads(request.content)
            self._next_id += 1
            key = {
                "id": str(self._next_id),
                "key": f"pak-new-{self._next_id}",
                "reusable": data["reusable"],
                "ephemeral": data["ephemeral"],
                "used": False,
                "expiration": data["expiration"],
                "aclTags": data.get("aclTags", []),
            }
            if data.get("user"):
                key["user"] = self._user(data["user"])
            self.preauth_keys.append(key)
            return httpx.Response(200, json={"preAuthKey": key})

        if method == "POST" and path == "/preauthkey/expire":
            data = json.loads(request.content)
            for key in self.preauth_keys:
                if key["key"] == data["key"]:
                    key["expiration"] = _iso(datetime.now(timezone.utc))
            return httpx.Response(200, json={})

        if method == "GET" and path == "/node":
            return httpx.Response(200, json={"nodes": self.nodes})

        if method == "POST" and path == "/node/register":
            self._next_id += 1
            node = {
                "id": str(self._next_id),
                "name": f"node-{self._next_id}",
                "user": self._user(params["user"]),
            }
            self.nodes.append(node)
            return httpx.Response(200, json={"node": node})

        return httpx.Response(404, text="not found")


# ─── Database ───────────────────────────────────────────


@pytest_asyncio.fixture()
async def db_engine(tmp_path):
    """A fresh SQLite file with the full schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'meshgate.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ─── Control plane ──────────────────────────────────────


@pytest.fixture
def fake_cp():
    return FakeControlPlane()


@pytest_asyncio.fixture()
async def control_plane(fake_cp):
    """The real ControlPlane interface wired to the fake server."""
    interface = ControlPlane(
        "http://controlplane.test",
        transport=httpx.MockTransport(fake_cp.handler),
    )
    yield interface
    await interface.aclose()


@pytest_asyncio.fixture()
async def admin_client(control_plane):
    """A control-plane client bound to an administrator credential."""
    return control_plane.runtime(ADMIN_KEY)


# ─── HTTP ───────────────────────────────────────────────


@pytest_asyncio.fixture()
async def client(session_factory, control_plane):
    """HTTP client with the database and control plane overridden.

    Learn: No auth override here. Tests authenticate for real, either
    through /auth/login or with `login_as`, so the capability checks in
    the routes are exercised as they run in production.
    """

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_control_plane] = lambda: control_plane
    app.dependency_overrides[get_oidc_provider] = lambda: None

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def login_as(session_factory):
    """Create a local user with a role and an OIDC session for it.

    Returns auth headers for that session. Role=None skips the user row
    (for testing a session whose user was deleted).
    """

    async def _login(
        subject: str,
        role: Optional[Role] = Role.member,
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> dict[str, str]:
        async with session_factory() as db:
            if role is not None:
                await UserService(db).reassign_subject(subject, role)
            session = await SessionService(db).create_session(
                kind="oidc",
                subject=subject,
                api_key=OIDC_SERVICE_KEY,
                email=email,
                name=name,
            )
        token = create_session_token(
            session.id, subject, datetime.now(timezone.utc) + timedelta(hours=1)
        )
        return {"Authorization": f"Bearer {token}"}

    return _login


@pytest.fixture
def oidc_service_key(monkeypatch):
    """Point OIDC sessions at the fake control plane's service credential."""
    monkeypatch.setattr(settings, "oidc_control_plane_api_key", OIDC_SERVICE_KEY)
    return OIDC_SERVICE_KEY
