"""Integration tests for prometheus_proxy/main.py — app wiring via ASGI transport."""

from unittest.mock import patch

import httpx
import pytest

from prometheus_proxy.auth.azure import AzureClient
from prometheus_proxy.auth.errors import CredentialConstructionError, UnsetClientIdError
from prometheus_proxy.main import VERSION, create_app
from prometheus_proxy.proxy.routes import PROMETHEUS_API_PATHS
from tests.conftest import FakeWorkloadCredential, RecordingBackend, StaticAuthClient


class TestHealthEndpoint:

    async def test_healthz(self, app_client):
        resp = await app_client.get("/healthz")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    async def test_healthz_non_get(self, app_client):
        resp = await app_client.post("/healthz")
        assert resp.status_code == 405
        assert resp.text == "method not allowed"

    async def test_healthz_not_authenticated(self, app_client, auth_client, backend):
        await app_client.get("/healthz")
        assert auth_client.calls == 0
        assert backend.requests == []


class TestMockStatusEndpoints:

    async def test_config(self, app_client):
        resp = await app_client.get("/api/v1/status/config")
        assert resp.status_code == 200
        assert resp.json() == {
            "status": "success",
            "data": {"yaml": "global:\n  scrape_interval: 15s\n"},
        }

    async def test_buildinfo(self, app_client):
        resp = await app_client.get("/api/v1/status/buildinfo")
        data = resp.json()["data"]
        assert data["version"] == "3.4.1"
        assert data["branch"] == "main"
        assert set(data) == {"version", "revision", "branch", "buildUser", "buildDate", "goVersion"}

    async def test_runtimeinfo_refreshed_per_call(self, app_client):
        first = (await app_client.get("/api/v1/status/runtimeinfo")).json()["data"]
        second = (await app_client.get("/api/v1/status/runtimeinfo")).json()["data"]
        assert first["storageRetention"] == "30d"
        assert first["startTime"] == second["startTime"]
        assert second["lastConfigTime"] >= first["lastConfigTime"]
        assert second["goroutineCount"] >= 1

    @pytest.mark.parametrize("path", [
        "/api/v1/status/config",
        "/api/v1/status/buildinfo",
        "/api/v1/status/runtimeinfo",
    ])
    async def test_non_get_forbidden(self, app_client, path):
        resp = await app_client.post(path)
        assert resp.status_code == 403
        assert resp.text == "forbidden request method"

    async def test_status_not_forwarded(self, app_client, backend):
        await app_client.get("/api/v1/status/config")
        assert backend.requests == []


class TestNotFound:

    async def test_unknown_path(self, app_client, backend):
        resp = await app_client.get("/api/v1/alerts")
        assert resp.status_code == 404
        assert backend.requests == []

    async def test_root(self, app_client):
        resp = await app_client.get("/")
        assert resp.status_code == 404


class TestRouting:

    @pytest.mark.parametrize("path", [
        "/api/v1/query",
        "/api/v1/query_range",
        "/api/v1/series",
        "/api/v1/labels",
        "/api/v1/label/__name__/values",
        "/api/v1/metadata",
        "/api/v1/format_query",
        "/api/v1/parse_query",
    ])
    async def test_proxied_paths(self, app_client, backend, path):
        resp = await app_client.get(path)
        assert resp.status_code == 200
        assert backend.last.url.path == path

    async def test_route_table_per_app(self, settings):
        first_backend, second_backend = RecordingBackend(), RecordingBackend()
        first = create_app(settings=settings, auth_client=StaticAuthClient(token="first"),
                           upstream_transport=httpx.MockTransport(first_backend))
        second = create_app(settings=settings, auth_client=StaticAuthClient(token="second"),
                            upstream_transport=httpx.MockTransport(second_backend))
        paths = [path.replace("{name}", "job") for path in PROMETHEUS_API_PATHS]

        async with first.router.lifespan_context(first), second.router.lifespan_context(second):
            for app in (first, second):
                transport = httpx.ASGITransport(app=app)
                async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                    for path in paths:
                        resp = await client.get(path)
                        assert resp.status_code == 200

        for backend, token in ((first_backend, "first"), (second_backend, "second")):
            assert [r.url.path for r in backend.requests] == paths
            assert {r.headers["Authorization"] for r in backend.requests} == {f"Bearer {token}"}

    async def test_request_id_header(self, app_client):
        resp = await app_client.get("/api/v1/query?query=up")
        assert len(resp.headers["X-Request-Id"]) == 36


class TestLifespan:

    async def test_initializes_and_closes_auth_client(self, settings, backend):
        auth_client = StaticAuthClient()
        app = create_app(settings=settings, auth_client=auth_client,
                         upstream_transport=httpx.MockTransport(backend))
        async with app.router.lifespan_context(app):
            assert auth_client.initialized is True
            assert app.state.forwarder is not None
        assert auth_client.closed is True

    async def test_credential_error_aborts_startup(self, settings):
        app = create_app(settings=settings.model_copy(update={"azure_client_secret": "s3cret"}))
        with patch("msal.ConfidentialClientApplication", side_effect=ValueError("bad authority")):
            with pytest.raises(CredentialConstructionError):
                async with app.router.lifespan_context(app):
                    pass

    async def test_unset_client_id_aborts_startup(self, settings, monkeypatch):
        monkeypatch.delenv("AZURE_CLIENT_ID", raising=False)
        app = create_app(settings=settings.model_copy(update={"azure_client_id": "<no value>"}))
        with pytest.raises(UnsetClientIdError):
            async with app.router.lifespan_context(app):
                pass

    async def test_builds_azure_client_from_settings(self, settings, backend):
        app = create_app(settings=settings, upstream_transport=httpx.MockTransport(backend))
        credential = FakeWorkloadCredential(token="wi-token")
        with patch("azure.identity.WorkloadIdentityCredential", return_value=credential):
            async with app.router.lifespan_context(app):
                assert isinstance(app.state.auth_client, AzureClient)
                assert app.state.auth_client.client_id == "test-client"
        assert credential.closed is True

    def test_version(self):
        assert create_app().version == VERSION


class TestEndToEndAzure:

    async def test_app_secret_token_injected(self, settings):
        backend = RecordingBackend()
        app = create_app(
            settings=settings.model_copy(update={"azure_client_secret": "s3cret"}),
            upstream_transport=httpx.MockTransport(backend),
        )
        with patch("msal.ConfidentialClientApplication") as mock_cls:
            mock_cls.return_value.acquire_token_for_client.return_value = {
                "access_token": "aad-token",
                "token_source": "identity_provider",
            }
            async with app.router.lifespan_context(app):
                transport = httpx.ASGITransport(app=app)
                async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                    resp = await client.get("/api/v1/query?query=up")

        assert resp.status_code == 200
        assert backend.last.headers["Authorization"] == "Bearer aad-token"

    async def test_empty_token_never_forwarded(self, settings):
        backend = RecordingBackend()
        app = create_app(
            settings=settings.model_copy(update={"azure_client_secret": "s3cret"}),
            upstream_transport=httpx.MockTransport(backend),
        )
        with patch("msal.ConfidentialClientApplication") as mock_cls:
            mock_cls.return_value.acquire_token_for_client.return_value = {"access_token": ""}
            async with app.router.lifespan_context(app):
                transport = httpx.ASGITransport(app=app)
                async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                    resp = await client.get("/api/v1/query?query=up")

        assert resp.status_code == 500
        assert resp.text == "failed to create client headers: empty authentication token"
        assert backend.requests == []
