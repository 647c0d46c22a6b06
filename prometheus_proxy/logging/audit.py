"""Structured JSON logging for the Prometheus proxy.

Logs go to stdout as JSON lines, with optional file output via
AUDIT_LOG_FILE. Every entry carries the request id of the request
being processed, if any.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from prometheus_proxy.config.settings import Settings, get_settings

LOGGER_NAME = "prometheus_proxy.audit"

# Request-scoped context for correlating log entries
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# WARN is accepted for parity with the Go-style level names used in deployments
_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(""),
        }
        # Merge any extra fields passed via `extra={}` kwarg
        if hasattr(record, "audit_data"):
            log_entry.update(record.audit_data)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging(settings: Settings | None = None) -> logging.Logger:
    """Configure the audit logger with JSON output."""
    settings = settings or get_settings()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_LEVELS.get(settings.log_level.upper(), logging.INFO))
    logger.handlers.clear()

    formatter = JSONFormatter()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    logger.addHandler(stdout_handler)

    if settings.audit_log_file:
        file_handler = logging.FileHandler(settings.audit_log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Prevent propagation to root logger (avoids duplicate output)
    logger.propagate = False
    return logger


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def generate_request_id() -> str:
    return str(uuid.uuid4())


def request_fields(request: Request, **fields) -> dict:
    """Fields identifying an inbound request in every log entry about it."""
    remote = f"{request.client.host}:{request.client.port}" if request.client else "unknown"
    return {
        "method": request.method,
        "url": str(request.url),
        "request_id": request_id_var.get(""),
        "remote_addr": remote,
        **fields,
    }


class RequestTimer:
    """Context manager to measure request latency."""

    def __init__(self):
        self.start_time: float = 0
        self.elapsed_ms: float = 0

    def start(self) -> "RequestTimer":
        self.start_time = time.perf_counter()
        return self

    def stop(self) -> float:
        self.elapsed_ms = round((time.perf_counter() - self.start_time) * 1000, 2)
        return self.elapsed_ms

    def __enter__(self):
        return self.start()

    def __exit__(self, *args):
        self.stop()


class RequestIdMiddleware:
    """Binds a fresh request id for the lifetime of each HTTP request.

    Pure ASGI so streamed responses and disconnect messages pass through
    untouched. The id is echoed back in the X-Request-Id header.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        rid = generate_request_id()
        token = request_id_var.set(rid)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message).append("X-Request-Id", rid)
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            request_id_var.reset(token)
