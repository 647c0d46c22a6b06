"""Health check, catch-all and mock Prometheus status endpoints.

Dashboards such as Grafana and Kiali probe the status API before
querying. Azure Managed Prometheus does not expose it, so the proxy
answers with fixed Prometheus-shaped payloads.
"""

import os
import platform
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from prometheus_proxy.logging.audit import get_audit_logger, request_fields

MOCK_CONFIG_YAML = "global:\n  scrape_interval: 15s\n"

# https://github.com/prometheus/prometheus/releases/tag/v3.4.1
MOCK_PROMETHEUS_VERSION = "3.4.1"
MOCK_PROMETHEUS_REVISION = "aea6503d9bbaad6c5faff3ecf6f1025213356c92"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BuildInfo:
    version: str = MOCK_PROMETHEUS_VERSION
    revision: str = MOCK_PROMETHEUS_REVISION
    branch: str = "main"
    buildUser: str = "prombot@github"
    buildDate: str = field(default_factory=lambda: _now().strftime("%Y%m%d-%H:%M:%S"))
    goVersion: str = field(default_factory=lambda: f"python{platform.python_version()}")


@dataclass
class RuntimeInfo:
    startTime: str = field(default_factory=lambda: _now().isoformat())
    CWD: str = "/"
    reloadConfigSuccess: bool = True
    lastConfigTime: str = ""
    timeSeriesCount: int = 0
    corruptionCount: int = 0
    goroutineCount: int = field(default_factory=threading.active_count)
    GOMAXPROCS: int = field(default_factory=lambda: os.cpu_count() or 1)
    GOGC: str = field(default_factory=lambda: os.environ.get("GOGC", ""))
    GODEBUG: str = field(default_factory=lambda: os.environ.get("GODEBUG", ""))
    # Kiali rejects an empty retention
    storageRetention: str = "30d"

    def update(self) -> None:
        self.lastConfigTime = _now().isoformat()
        self.goroutineCount = threading.active_count()


def _success(data) -> dict:
    return {"status": "success", "data": data}


def _forbidden_method(request: Request) -> PlainTextResponse | None:
    if request.method == "GET":
        return None
    get_audit_logger().error("invalid request method", extra={"audit_data": request_fields(request)})
    return PlainTextResponse("forbidden request method", status_code=403)


def create_status_router() -> APIRouter:
    """Routes answered locally, never forwarded upstream."""
    router = APIRouter()
    all_methods = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

    @router.api_route("/healthz", methods=all_methods)
    async def healthz(request: Request):
        logger = get_audit_logger()
        fields = request_fields(request)
        logger.debug("processing health check request", extra={"audit_data": fields})
        if request.method != "GET":
            logger.warning("health check received non-GET request", extra={"audit_data": fields})
            return PlainTextResponse("method not allowed", status_code=405)
        logger.debug("health check successful", extra={"audit_data": fields})
        return {"status": "ok"}

    @router.api_route("/api/v1/status/config", methods=all_methods)
    async def status_config(request: Request):
        logger = get_audit_logger()
        logger.info("processing request", extra={"audit_data": request_fields(request)})
        rejected = _forbidden_method(request)
        if rejected is not None:
            return rejected
        logger.info("request completed", extra={"audit_data": request_fields(request, status_code=200)})
        return _success({"yaml": MOCK_CONFIG_YAML})

    @router.api_route("/api/v1/status/buildinfo", methods=all_methods)
    async def status_buildinfo(request: Request):
        logger = get_audit_logger()
        logger.info("processing request", extra={"audit_data": request_fields(request)})
        rejected = _forbidden_method(request)
        if rejected is not None:
            return rejected
        build_info: BuildInfo = request.app.state.build_info
        logger.info("request completed", extra={"audit_data": request_fields(request, status_code=200)})
        return _success(asdict(build_info))

    @router.api_route("/api/v1/status/runtimeinfo", methods=all_methods)
    async def status_runtimeinfo(request: Request):
        logger = get_audit_logger()
        logger.info("processing request", extra={"audit_data": request_fields(request)})
        rejected = _forbidden_method(request)
        if rejected is not None:
            return rejected
        runtime_info: RuntimeInfo = request.app.state.runtime_info
        runtime_info.update()
        logger.info("request completed", extra={"audit_data": request_fields(request, status_code=200)})
        return _success(asdict(runtime_info))

    return router


async def not_found(request: Request, exc) -> PlainTextResponse:
    """Log calls to unimplemented paths before answering 404."""
    get_audit_logger().info(
        "processing unimplemented path request",
        extra={"audit_data": request_fields(request, status_code=404)},
    )
    return PlainTextResponse("404 page not found", status_code=404)
