"""Shared fixtures for the Prometheus proxy test suite."""

import httpx
import pytest

from prometheus_proxy.auth.base import AuthClient
from prometheus_proxy.auth.errors import UpstreamAuthError
from prometheus_proxy.config.settings import Settings, get_settings
from prometheus_proxy.main import create_app

PROMETHEUS_URL = "http://up:9090"

REQUIRED_ENV = {
    "PROMETHEUS_URL": PROMETHEUS_URL,
    "AZURE_TENANT_ID": "test-tenant",
}


@pytest.fixture
def override_settings(monkeypatch):
    """Factory fixture: set env vars and clear settings cache.

    Usage:
        override_settings(AZURE_CLIENT_SECRET="s3cret", LOG_LEVEL="DEBUG")
    """
    def _override(**kwargs):
        for key, value in {**REQUIRED_ENV, **kwargs}.items():
            monkeypatch.setenv(key.upper(), str(value))
        # Clear lru_cache so Settings re-reads env
        get_settings.cache_clear()
        return get_settings()

    yield _override

    # Always clear cache on teardown so other tests get fresh settings
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        prometheus_url=PROMETHEUS_URL,
        azure_tenant_id="test-tenant",
        azure_client_id="test-client",
        _env_file=None,
    )


class FakeConfidentialApp:
    """Stands in for msal.ConfidentialClientApplication.

    Like msal, ``acquire_token_for_client`` answers from its app token
    cache when it can and only otherwise calls the identity provider,
    caching any token it gets back.
    """

    def __init__(self, cached: str | None = None, by_credential=None):
        self.cached_token = cached
        self.credential_result = by_credential
        self.calls = 0
        self.exchanges = 0
        self.scopes: list[list[str]] = []

    def acquire_token_for_client(self, scopes):
        self.calls += 1
        self.scopes.append(scopes)
        if self.cached_token:
            return {"access_token": self.cached_token, "token_type": "Bearer", "token_source": "cache"}

        self.exchanges += 1
        if isinstance(self.credential_result, Exception):
            raise self.credential_result
        if self.credential_result is None:
            return None
        result = dict(self.credential_result)
        if result.get("access_token"):
            self.cached_token = result["access_token"]
            result.setdefault("token_source", "identity_provider")
        return result


class FakeAccessToken:
    def __init__(self, token: str, expires_on: int = 0):
        self.token = token
        self.expires_on = expires_on


class FakeWorkloadCredential:
    """Stands in for azure.identity.WorkloadIdentityCredential."""

    def __init__(self, token: str = "", error: Exception | None = None, **kwargs):
        self.kwargs = kwargs
        self._token = token
        self._error = error
        self.calls: list[tuple[str, ...]] = []
        self.closed = False

    def get_token(self, *scopes, **kwargs):
        self.calls.append(scopes)
        if self._error is not None:
            raise self._error
        return FakeAccessToken(self._token)

    def close(self):
        self.closed = True


class StaticAuthClient(AuthClient):
    """Auth client returning a fixed token, or failing, without Azure."""

    def __init__(self, token: str = "test-token", error: Exception | None = None):
        self.token = token
        self.error = error
        self.initialized = False
        self.closed = False
        self.calls = 0

    def init_client(self, logger) -> None:
        self.initialized = True

    async def acquire_token(self) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.token

    async def close(self) -> None:
        self.closed = True


class RecordingBackend:
    """httpx MockTransport handler that records forwarded requests."""

    def __init__(self, status_code: int = 200, content: bytes = b'{"status":"success"}',
                 headers: dict | None = None, error: Exception | None = None):
        self.status_code = status_code
        self.content = content
        self.headers = headers if headers is not None else {"Content-Type": "application/json"}
        self.error = error
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        # stream= keeps the body unread so the proxy can relay raw bytes
        return httpx.Response(
            self.status_code,
            headers=self.headers,
            stream=httpx.ByteStream(self.content),
        )

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def auth_client() -> StaticAuthClient:
    return StaticAuthClient()


@pytest.fixture
async def app_client(settings, auth_client, backend):
    """httpx AsyncClient wired to a started app with a fake Prometheus."""
    app = create_app(
        settings=settings,
        auth_client=auth_client,
        upstream_transport=httpx.MockTransport(backend),
    )
    # ASGITransport does not run lifespan events itself
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


@pytest.fixture
def failing_auth_client() -> StaticAuthClient:
    return StaticAuthClient(error=UpstreamAuthError("failed to acquire azure token: invalid_client"))
