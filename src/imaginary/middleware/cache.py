"""
=============================================================================
HTTP CACHE HEADERS
=============================================================================

Enabled when -http-cache-ttl is anything but -1. Applies to GET requests
on every path except the informational ones ("/" and "/health"):

    TTL      Cache-Control                                      Expires
    ───────  ─────────────────────────────────────────────────  ────────
    0        private, no-cache, no-store, must-revalidate       -
    N > 0    public, s-maxage=N, max-age=N, no-transform        now + N

Headers a handler set itself are left alone.

=============================================================================
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, format_http_date


PUBLIC_PATHS = frozenset({"/", "/health"})

NO_CACHE = "private, no-cache, no-store, must-revalidate"


def cache_control_value(ttl: int) -> str:
    if ttl == 0:
        return NO_CACHE
    return f"public, s-maxage={ttl}, max-age={ttl}, no-transform"


class CacheControlMiddleware(Middleware):
    def __init__(self, ttl: int, public_paths: Optional[Iterable[str]] = None):
        if ttl < 0:
            raise ValueError(f"ttl must be >= 0, got {ttl}")
        self.ttl = ttl
        self.public_paths = frozenset(public_paths) if public_paths is not None else PUBLIC_PATHS

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        response = next(request)

        if request.method != "GET" or request.path in self.public_paths:
            return response

        response.headers.setdefault("Cache-Control", cache_control_value(self.ttl))
        if self.ttl > 0:
            expires = datetime.now(timezone.utc) + timedelta(seconds=self.ttl)
            response.headers.setdefault("Expires", format_http_date(expires))
        return response
