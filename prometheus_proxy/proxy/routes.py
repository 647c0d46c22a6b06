"""Prometheus HTTP API paths forwarded upstream with authentication."""

from fastapi import APIRouter, Request
from fastapi.responses import Response

PROMETHEUS_API_PATHS = (
    "/api/v1/query",
    "/api/v1/query_range",
    "/api/v1/query_exemplars",
    "/api/v1/format_query",
    "/api/v1/parse_query",
    "/api/v1/series",
    "/api/v1/labels",
    "/api/v1/label/{name}/values",
    "/api/v1/metadata",
    "/api/v1/targets/metadata",
)

FORWARDED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def create_prometheus_router(paths: tuple[str, ...] = PROMETHEUS_API_PATHS) -> APIRouter:
    """Bind every proxied path to the app's forwarder.

    Each app instance owns its router and forwarder, so several apps can
    run side by side in one process.
    """
    router = APIRouter()

    async def forward(request: Request) -> Response:
        return await request.app.state.forwarder.forward(request)

    for path in paths:
        router.add_api_route(
            path,
            forward,
            methods=FORWARDED_METHODS,
            include_in_schema=False,
        )
    return router
