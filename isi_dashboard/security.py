"""
isi_dashboard.security — HTTP middleware for the dashboard API.

Provides:
    - RequestIdMiddleware: X-Request-ID on every request/response, plus
      one structured log line per request
    - SecurityHeadersMiddleware: OWASP response headers and per-route
      Cache-Control
    - RequestSizeLimitMiddleware: 413 for oversized bodies, 431 for
      oversized headers
    - ETagMiddleware: weak ETag on 200 GET responses, 304 on match
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("isi.security")

MAX_BODY_BYTES = 4096       # scenario/compare bodies are well under 1 KB
MAX_HEADER_BYTES = 16_384

NO_STORE = "no-store"
EXPORT_CACHE = "public, max-age=300, s-maxage=300"
DEFAULT_CACHE = "public, max-age=60, s-maxage=300, stale-while-revalidate=600"

# Cache-Control by path prefix, first match wins.
_CACHE_RULES: tuple[tuple[str, str], ...] = (
    ("/health", NO_STORE),
    ("/api/scenario", NO_STORE),
    ("/api/compare", NO_STORE),
    ("/api/export/", EXPORT_CACHE),
)

_ETAG_EXCLUDE_PATHS = frozenset(("/health",))


def cache_policy(path: str) -> str:
    for prefix, policy in _CACHE_RULES:
        if path.startswith(prefix):
            return policy
    return DEFAULT_CACHE


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Request-ID or mint one; echo it back."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        request.state.request_id = request_id
        started = time.monotonic()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        _log_request(request, response.status_code, round((time.monotonic() - started) * 1000, 1), request_id)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """OWASP headers on every response. HSTS only when enabled (prod)."""

    def __init__(self, app: Any, *, enable_hsts: bool = False) -> None:
        super().__init__(app)
        self.enable_hsts = enable_hsts

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        response = await call_next(request)
        headers = response.headers
        headers["X-Content-Type-Options"] = "nosniff"
        headers["X-Frame-Options"] = "DENY"
        headers["Referrer-Policy"] = "no-referrer"
        headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        headers["Cross-Origin-Resource-Policy"] = "same-site"
        if self.enable_hsts:
            headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        if "cache-control" not in headers:
            headers["Cache-Control"] = cache_policy(request.url.path)
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject oversized requests before they reach a route."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        if sum(len(k) + len(v) for k, v in request.headers.raw) > MAX_HEADER_BYTES:
            return _json_error(431, "Request headers too large")

        declared = request.headers.get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > MAX_BODY_BYTES:
            return _json_error(413, "Request body too large")

        return await call_next(request)


class ETagMiddleware(BaseHTTPMiddleware):
    """Weak ETag for 200 GET responses; 304 when If-None-Match matches."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        if request.method != "GET" or request.url.path in _ETAG_EXCLUDE_PATHS:
            return await call_next(request)

        response = await call_next(request)
        if response.status_code != 200:
            return response

        chunks: list[bytes] = []
        async for chunk in response.body_iterator:  # type: ignore[attr-defined]
            chunks.append(chunk if isinstance(chunk, bytes) else chunk.encode())
        body = b"".join(chunks)

        etag = f'W/"{hashlib.md5(body, usedforsecurity=False).hexdigest()}"'  # noqa: S324
        candidates = {t.strip() for t in request.headers.get("if-none-match", "").split(",")}
        if etag in candidates:
            return Response(status_code=304, headers={"ETag": etag})

        headers = {k: v for k, v in response.headers.items() if k.lower() != "content-length"}
        headers["ETag"] = etag
        return Response(
            content=body,
            status_code=200,
            headers=headers,
            media_type=response.media_type,
        )


def _json_error(status_code: int, detail: str) -> Response:
    return Response(
        content=json.dumps({"detail": detail}),
        status_code=status_code,
        media_type="application/json",
    )


def _mask_ip(ip: str | None) -> str:
    """First two IPv4 octets, or the first four IPv6 groups."""
    if not ip:
        return "unknown"
    if ":" in ip:
        return ":".join(ip.split(":")[:4]) + "::*"
    parts = ip.split(".")
    if len(parts) == 4:
        return f"{parts[0]}.{parts[1]}.*.*"
    return "unknown"


def _log_request(request: Request, status_code: int, latency_ms: float, request_id: str) -> None:
    line = json.dumps({
        "event": "http_request",
        "method": request.method,
        "path": request.url.path,
        "status": status_code,
        "latency_ms": latency_ms,
        "client_ip": _mask_ip(request.client.host if request.client else None),
        "request_id": request_id,
    })
    if status_code >= 500:
        logger.error(line)
    elif status_code >= 400:
        logger.warning(line)
    else:
        logger.info(line)
