"""Header redaction for log output.

Only ever applied to copies written to logs; the headers sent upstream
are never modified.
"""

from collections.abc import Iterable, Mapping

import httpx

REDACTED = "[REDACTED]"
SENSITIVE_HEADERS = frozenset({"authorization", "cookie"})

HeaderInput = httpx.Headers | Mapping[str, str | list[str]] | Iterable[tuple[str, str]]


def redact_headers(headers: HeaderInput) -> dict[str, str | list[str]]:
    """Return a copy of ``headers`` with credentials masked.

    Keys keep their original spelling. Repeated headers are kept as a
    list of values; a sensitive key collapses to the single marker.
    """
    redacted: dict[str, str | list[str]] = {}
    for key, value in _iter_items(headers):
        if key.lower() in SENSITIVE_HEADERS:
            redacted[key] = REDACTED
            continue
        if key in redacted:
            existing = redacted[key]
            if not isinstance(existing, list):
                existing = [existing]
            existing = existing + (value if isinstance(value, list) else [value])
            redacted[key] = existing
        else:
            redacted[key] = list(value) if isinstance(value, list) else value
    return redacted


def _iter_items(headers: HeaderInput):
    if isinstance(headers, httpx.Headers):
        # raw keeps repeated headers separate and the original key casing
        return [
            (key.decode(headers.encoding), value.decode(headers.encoding))
            for key, value in headers.raw
        ]
    if isinstance(headers, Mapping):
        return headers.items()
    return headers
