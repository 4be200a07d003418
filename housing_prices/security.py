"""
housing_prices.security — HTTP middleware for the read API.

Provides:
    - RequestIdMiddleware: X-Request-ID on every response (a well-formed
      incoming id is reused) and one structured log line per request
    - SecurityHeadersMiddleware: hardening headers and Cache-Control per
      endpoint

Price data only changes when the pipeline runs; reference data
(building types, geometries) changes far less often.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import re
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("hsp.security")

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

NO_STORE = "no-store"

# First matching prefix wins.
CACHE_RULES: tuple[tuple[str, str], ...] = (
    ("/health", NO_STORE),
    ("/api/building-types", "public, max-age=86400"),
    ("/api/geometries", "public, max-age=86400"),
    ("/api/", "public, max-age=300, stale-while-revalidate=600"),
)

SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    # map frontends on other origins read the GeoJSON directly
    "Cross-Origin-Resource-Policy": "cross-origin",
}


def cache_control_for(path: str, status_code: int) -> str | None:
    """Cache-Control value for a response, or None to leave it unset."""
    if status_code >= 400:
        return NO_STORE
    for prefix, value in CACHE_RULES:
        if path.startswith(prefix):
            return value
    return None


def request_id_from(request: Request) -> str:
    incoming = request.headers.get("x-request-id", "")
    if _REQUEST_ID_RE.match(incoming):
        return incoming
    return uuid.uuid4().hex[:16]


class RequestIdMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        request_id = request_id_from(request)
        request.state.request_id = request_id
        started = time.monotonic()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        _log_request(request, response.status_code, (time.monotonic() - started) * 1000, request_id)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Hardening headers plus Cache-Control from CACHE_RULES.

    HSTS is opt-in; TLS terminates at the proxy in production.
    """

    def __init__(self, app: Any, *, enable_hsts: bool = False) -> None:
        super().__init__(app)
        self.enable_hsts = enable_hsts

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)
        if self.enable_hsts:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        cache_control = cache_control_for(request.url.path, response.status_code)
        if cache_control is not None:
            response.headers["Cache-Control"] = cache_control
        return response


def mask_ip(ip: str | None) -> str:
    """Client address reduced to its network: /16 for IPv4, /48 for IPv6."""
    if not ip:
        return "unknown"
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return "unknown"
    prefix = 16 if address.version == 4 else 48
    return str(ipaddress.ip_network(f"{address}/{prefix}", strict=False))


def _log_request(request: Request, status_code: int, latency_ms: float, request_id: str) -> None:
    event = json.dumps({
        "event": "http_request",
        "method": request.method,
        "path": request.url.path,
        "query": request.url.query or None,
        "status": status_code,
        "latency_ms": round(latency_ms, 1),
        "client": mask_ip(request.client.host if request.client else None),
        "request_id": request_id,
    })
    level = logging.INFO
    if status_code >= 500:
        level = logging.ERROR
    elif status_code >= 400:
        level = logging.WARNING
    logger.log(level, event)
