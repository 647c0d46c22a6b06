"""Authenticated forwarding to the upstream Prometheus server.

Pipeline per request: build URL -> capture body (POST only) -> inject
auth headers -> dispatch -> relay status, headers and raw body bytes.
"""

import asyncio
from collections.abc import AsyncIterator
from logging import Logger

import httpx
from starlette.requests import ClientDisconnect, Request
from starlette.responses import PlainTextResponse, Response, StreamingResponse

from prometheus_proxy.auth.base import AuthClient
from prometheus_proxy.auth.errors import UpstreamCallError
from prometheus_proxy.logging.audit import RequestTimer, get_audit_logger, request_fields
from prometheus_proxy.security.redaction import redact_headers

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# nginx convention; the caller is gone so nobody reads it
CLIENT_CLOSED_REQUEST = 499

# Hop-by-hop headers, RFC 7230 section 6.1. Never relayed.
HOP_BY_HOP_HEADERS: frozenset[str] = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})


def build_upstream_url(base_url: str, path: str, method: str, raw_query: str) -> str:
    """Prometheus URL for an inbound request.

    POST requests carry their parameters in the form body, so the query
    string is only appended for GET.
    """
    upstream_url = base_url.rstrip("/") + path
    if method == "GET" and raw_query:
        upstream_url = f"{upstream_url}?{raw_query}"
    return upstream_url


class ClientDisconnected(Exception):
    """The caller went away before the upstream call finished."""


class PrometheusForwarder:
    """Forwards requests to Prometheus with injected auth headers."""

    def __init__(
        self,
        base_url: str,
        auth_client: AuthClient,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url
        self._auth_client = auth_client
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def forward(self, request: Request) -> Response:
        logger = get_audit_logger()
        fields = request_fields(request)
        logger.info("processing request", extra={"audit_data": fields})

        timer = RequestTimer().start()
        upstream_url = build_upstream_url(
            self._base_url, request.url.path, request.method, request.url.query
        )
        logger.debug(
            "constructed upstream prometheus URL",
            extra={"audit_data": {**fields, "prometheus_url": upstream_url}},
        )

        body: bytes | None = None
        headers: list[tuple[str, str]] = []
        if request.method == "POST":
            try:
                body = await request.body()
            except ClientDisconnect as e:
                logger.error(
                    "failed to read request body",
                    extra={"audit_data": {**fields, "error": repr(e)}},
                )
                _log_completed(logger, fields, 500, timer)
                return PlainTextResponse(
                    f"failed to read request body: {e!r}", status_code=500
                )
            logger.debug("copying request body for POST method", extra={"audit_data": fields})
            headers.append(("Content-Type", FORM_CONTENT_TYPE))

        try:
            upstream = await _until_disconnected(
                request,
                self._dispatch(request.method, upstream_url, headers, body, logger, fields),
            )
        except ClientDisconnected:
            logger.warning(
                "client disconnected, upstream call aborted",
                extra={"audit_data": fields},
            )
            _log_completed(logger, fields, CLIENT_CLOSED_REQUEST, timer)
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        except _HeaderError as e:
            _log_completed(logger, fields, 500, timer)
            return PlainTextResponse(
                f"failed to create client headers: {e.cause}", status_code=500
            )
        except UpstreamCallError as e:
            _log_completed(logger, fields, e.status_code, timer)
            return PlainTextResponse(str(e), status_code=e.status_code)

        relayed = StreamingResponse(
            _relay_body(upstream, logger, fields, timer),
            status_code=upstream.status_code,
        )
        for key, value in upstream.headers.multi_items():
            if key.lower() not in HOP_BY_HOP_HEADERS:
                relayed.headers.append(key, value)
        return relayed

    async def _dispatch(
        self,
        method: str,
        upstream_url: str,
        headers: list[tuple[str, str]],
        body: bytes | None,
        logger: Logger,
        fields: dict,
    ) -> httpx.Response:
        try:
            client_headers = await self._auth_client.get_headers()
        except Exception as e:
            logger.error(
                "failed to create client headers",
                extra={"audit_data": {**fields, "error": str(e)}},
            )
            raise _HeaderError(e) from e
        headers = headers + [(h.key, h.value) for h in client_headers]

        client = await self._get_client()
        outbound = client.build_request(method, upstream_url, content=body, headers=headers)
        logger.debug(
            "forwarding request to upstream prometheus",
            extra={"audit_data": {
                **fields,
                "prometheus_url": upstream_url,
                "headers": redact_headers(outbound.headers),
                "body": (body or b"").decode(errors="replace"),
            }},
        )

        try:
            return await client.send(outbound, stream=True)
        except httpx.TimeoutException as e:
            logger.error(
                "failed to call upstream",
                extra={"audit_data": {**fields, "status_code": 504, "error": repr(e)}},
            )
            raise UpstreamCallError(f"failed to call upstream: {e!r}", status_code=504) from e
        except httpx.HTTPError as e:
            logger.error(
                "failed to call upstream",
                extra={"audit_data": {**fields, "status_code": 502, "error": repr(e)}},
            )
            raise UpstreamCallError(f"failed to call upstream: {e!r}") from e

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class _HeaderError(Exception):
    def __init__(self, cause: Exception):
        super().__init__(str(cause))
        self.cause = cause


async def _relay_body(
    upstream: httpx.Response, logger: Logger, fields: dict, timer: RequestTimer
) -> AsyncIterator[bytes]:
    """Stream the upstream body byte-for-byte, still content-encoded."""
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        # Status line is already on the wire
        logger.error(
            "failed to copy response body",
            extra={"audit_data": {**fields, "error": repr(e)}},
        )
    finally:
        await upstream.aclose()
        _log_completed(logger, fields, upstream.status_code, timer)


def _log_completed(logger: Logger, fields: dict, status_code: int, timer: RequestTimer) -> None:
    timer.stop()
    logger.info(
        "request completed",
        extra={"audit_data": {**fields, "status_code": status_code, "latency_ms": timer.elapsed_ms}},
    )


async def _until_disconnected(request: Request, awaitable):
    """Run ``awaitable`` unless the caller disconnects first."""
    work = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (work, watcher):
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
    if work.done() and not work.cancelled():
        return work.result()
    raise ClientDisconnected()


async def _wait_for_disconnect(request: Request) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return
