"""Prometheus Proxy — FastAPI application entry point.

An authenticating reverse proxy that sits in front of Azure Managed
Prometheus, injecting an Azure AD bearer token into every forwarded
query and relaying the upstream response unchanged.
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from prometheus_proxy.auth.base import AuthClient
from prometheus_proxy.auth.factory import build_auth_client
from prometheus_proxy.config.settings import Settings, get_settings
from prometheus_proxy.logging.audit import RequestIdMiddleware, setup_logging
from prometheus_proxy.proxy.handler import PrometheusForwarder
from prometheus_proxy.proxy.routes import create_prometheus_router
from prometheus_proxy.proxy.status import BuildInfo, RuntimeInfo, create_status_router, not_found

VERSION = "0.3.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks.

    Credential errors raised here abort startup before any traffic is
    served.
    """
    settings: Settings = app.state.settings or get_settings()
    logger = setup_logging(settings)

    auth_client: AuthClient = app.state.auth_client or build_auth_client(settings)
    auth_client.init_client(logger)

    app.state.auth_client = auth_client
    app.state.forwarder = PrometheusForwarder(
        base_url=settings.prometheus_url,
        auth_client=auth_client,
        timeout=settings.upstream_timeout_seconds,
        transport=app.state.upstream_transport,
    )
    app.state.build_info = BuildInfo()
    app.state.runtime_info = RuntimeInfo()

    logger.info(
        "starting prometheus proxy",
        extra={"audit_data": {
            "prometheus_url": settings.prometheus_url,
            "port": settings.port,
            "version": VERSION,
        }},
    )
    yield
    await app.state.forwarder.close()
    await auth_client.close()
    logger.info("prometheus proxy stopped")


def create_app(
    settings: Settings | None = None,
    auth_client: AuthClient | None = None,
    upstream_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build an app instance with its own routes and upstream client.

    Settings and the auth client default to the environment-driven ones
    and are resolved at startup.
    """
    app = FastAPI(
        title="Prometheus Proxy",
        description="Authenticating proxy for Azure Managed Prometheus",
        version=VERSION,
        lifespan=lifespan,
        exception_handlers={404: not_found},
    )
    app.state.settings = settings
    app.state.auth_client = auth_client
    app.state.upstream_transport = upstream_transport

    app.include_router(create_status_router())
    app.include_router(create_prometheus_router())
    app.add_middleware(RequestIdMiddleware)
    return app
