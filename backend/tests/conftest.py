"""Test configuration and fixtures."""

import json
import os
from typing import Any, Callable, Optional

import httpx
import pytest

# Set up test environment variables BEFORE importing gateway modules
os.environ.setdefault("OAUTH_STATE_SECRET", "test-state-secret-for-testing-only")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.pop("REDIS_URL", None)

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from oauth_gateway.config import Settings
from oauth_gateway.core.kv_store import InMemoryKVStore
from oauth_gateway.core.orchestrator import build_orchestrator
from oauth_gateway.main import create_app

MASTER_STORE_URL = "https://master.test"
IDENTITY_STORE_URL = "https://users.test"
GATEWAY_URL = "https://gateway.test"
TENANT_APP_URL = "https://tenant.test"

TENANT_ID = "app-1"
OWNER_ID = "dev-1"

Handler = Callable[[httpx.Request], httpx.Response]


class FakeUpstream:
    """Routes outbound httpx requests to canned handlers and records them.

    Routes are keyed by method and URL without query string. Unrouted
    requests get a 404.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], Handler] = {}
        self.calls: list[httpx.Request] = []

    def add(
        self,
        method: str,
        url: str,
        json: Any = None,
        status_code: int = 200,
        handler: Optional[Handler] = None,
    ) -> None:
        if handler is None:
            def handler(request: httpx.Request, _json=json, _status=status_code) -> httpx.Response:
                return httpx.Response(_status, json=_json)
        self.routes[(method.upper(), url)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        url = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        handler = self.routes.get((request.method, url))
        if handler is None:
            return httpx.Response(404, json={"message": f"No route for {request.method} {url}"})
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls_to(self, host: str) -> list[httpx.Request]:
        return [c for c in self.calls if c.url.host == host]


class FakeMasterStore:
    """PostgREST-style master store holding projects, credentials and plans."""

    def __init__(self):
        self.projects: dict[str, dict] = {}
        self.credentials: dict[str, list[dict]] = {}
        self.plans: dict[str, str] = {}

    @staticmethod
    def _eq(request: httpx.Request, field: str) -> str:
        return request.url.params.get(field, "").removeprefix("eq.")

    def projects_handler(self, request: httpx.Request) -> httpx.Response:
        project = self.projects.get(self._eq(request, "id"))
        return httpx.Response(200, json=[project] if project else [])

    def credentials_handler(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=self.credentials.get(self._eq(request, "project_id"), []))

    def developers_handler(self, request: httpx.Request) -> httpx.Response:
        owner_id = self._eq(request, "id")
        if owner_id not in self.plans:
            return httpx.Response(200, json=[])
        return httpx.Response(200, json=[{"plan": self.plans[owner_id]}])

    def install(self, upstream: FakeUpstream) -> None:
        upstream.add("GET", f"{MASTER_STORE_URL}/rest/v1/projects", handler=self.projects_handler)
        upstream.add("GET", f"{MASTER_STORE_URL}/rest/v1/oauth_credentials", handler=self.credentials_handler)
        upstream.add("GET", f"{MASTER_STORE_URL}/rest/v1/developers", handler=self.developers_handler)


class FakeIdentityStore:
    """Admin users API of a tenant's user store."""

    def __init__(self):
        self.users: list[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            page = int(request.url.params.get("page", 1))
            per_page = int(request.url.params.get("per_page", 50))
            start = (page - 1) * per_page
            return httpx.Response(200, json={"users": self.users[start:start + per_page]})
        body = json.loads(request.content)
        user = {"id": f"user-{len(self.users) + 1}", **body}
        self.users.append(user)
        return httpx.Response(200, json=user)

    def install(self, upstream: FakeUpstream) -> None:
        url = f"{IDENTITY_STORE_URL}/auth/v1/admin/users"
        upstream.add("GET", url, handler=self.handler)
        upstream.add("POST", url, handler=self.handler)


def project_record(tenant_id: str = TENANT_ID, owner_id: str = OWNER_ID) -> dict:
    return {
        "id": tenant_id,
        "owner_id": owner_id,
        "frontend_base_url": TENANT_APP_URL,
        "supabase_url": IDENTITY_STORE_URL,
        "supabase_service_role_key": "tenant-service-key",
    }


def credential_record(provider: str, enabled: bool = True, **extra: Any) -> dict:
    return {
        "provider": provider,
        "client_id": f"{provider}-client-id",
        "client_secret": f"{provider}-client-secret",
        "extra": extra,
        "enabled": enabled,
    }


@pytest.fixture
def settings() -> Settings:
    return Settings(
        oauth_state_secret="test-state-secret",
        master_store_url=MASTER_STORE_URL,
        master_store_key="master-service-key",
        public_base_url=GATEWAY_URL,
        rate_limit_enabled=False,
        admin_api_key="admin-key",
        redis_url=None,
    )


@pytest.fixture
def kv_store() -> InMemoryKVStore:
    return InMemoryKVStore()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def master_store(upstream: FakeUpstream) -> FakeMasterStore:
    """Master store with one tenant: WeChat enabled, QQ disabled."""
    store = FakeMasterStore()
    store.projects[TENANT_ID] = project_record()
    store.credentials[TENANT_ID] = [
        credential_record("wechat"),
        credential_record("qq", enabled=False),
    ]
    store.plans[OWNER_ID] = "free"
    store.install(upstream)
    return store


@pytest.fixture
def identity_store(upstream: FakeUpstream) -> FakeIdentityStore:
    store = FakeIdentityStore()
    store.install(upstream)
    return store


@pytest.fixture
def wechat_upstream(upstream: FakeUpstream) -> FakeUpstream:
    """WeChat token and user info endpoints answering successfully."""
    upstream.add(
        "GET",
        "https://api.weixin.qq.com/sns/oauth2/access_token",
        json={
            "access_token": "wx-access-token",
            "expires_in": 7200,
            "refresh_token": "wx-refresh-token",
            "openid": "wx-openid",
            "unionid": "wx-unionid",
        },
    )
    upstream.add(
        "GET",
        "https://api.weixin.qq.com/sns/userinfo",
        json={
            "openid": "wx-openid",
            "unionid": "wx-unionid",
            "nickname": "Alice",
            "sex": 2,
            "headimgurl": "https://img.test/alice.png",
        },
    )
    return upstream


@pytest.fixture
def orchestrator(settings, kv_store, upstream, master_store, identity_store):
    return build_orchestrator(settings, kv_store=kv_store, transport=upstream.transport)


@pytest.fixture
def app(settings, orchestrator):
    return create_app(settings=settings, orchestrator=orchestrator)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url=GATEWAY_URL) as client:
        yield client


@pytest.fixture(scope="session")
def rsa_keypair() -> tuple[str, str]:
    """PKCS8 private key and SPKI public key, both PEM."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem
