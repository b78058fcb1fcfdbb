"""
=============================================================================
CORS
=============================================================================

Enabled with -cors. The defaults are permissive: any origin may call the
API with simple methods, which is what browser-side image tools need.

    Browser                                   imaginary
       │  OPTIONS /resize                          │
       │  Origin: https://app.example              │
       │  Access-Control-Request-Method: POST      │
       │ ─────────────────────────────────────────►│  preflight, answered
       │                                           │  here with 204
       │ ◄──────────────────────────────────────── │
       │  204 + Access-Control-Allow-* headers     │
       │                                           │
       │  POST /resize                             │
       │ ─────────────────────────────────────────►│  passed on, headers
       │ ◄──────────────────────────────────────── │  added to response

Sits before the API key check: browsers send preflights without
credentials, and a 401 on the preflight would hide the real error.

=============================================================================
"""

from dataclasses import dataclass, field
from http import HTTPStatus
from typing import List, Optional

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder


@dataclass
class CORSConfig:
    allow_origins: List[str] = field(default_factory=lambda: ["*"])
    allow_methods: List[str] = field(default_factory=lambda: ["GET", "POST", "HEAD"])
    allow_headers: List[str] = field(
        default_factory=lambda: ["Origin", "Accept", "Content-Type", "X-Requested-With", "API-Key"]
    )
    expose_headers: List[str] = field(default_factory=list)
    allow_credentials: bool = False
    max_age: int = 86400


class CORSMiddleware(Middleware):
    def __init__(self, config: Optional[CORSConfig] = None):
        self.config = config or CORSConfig()

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        origin = request.get_header("origin")

        if self._is_preflight(request, origin):
            return self._handle_preflight(request, origin)

        response = next(request)
        self._add_cors_headers(response, origin)
        return response

    @staticmethod
    def _is_preflight(request: HTTPRequest, origin: str) -> bool:
        return (
            request.method == "OPTIONS"
            and bool(origin)
            and bool(request.get_header("access-control-request-method"))
        )

    def _handle_preflight(self, request: HTTPRequest, origin: str) -> HTTPResponse:
        response = ResponseBuilder().status(HTTPStatus.NO_CONTENT).build()
        if not self._add_cors_headers(response, origin):
            return response

        requested_method = request.get_header("access-control-request-method").upper()
        if requested_method in self.config.allow_methods:
            response.headers["Access-Control-Allow-Methods"] = ", ".join(self.config.allow_methods)
        if request.get_header("access-control-request-headers"):
            response.headers["Access-Control-Allow-Headers"] = ", ".join(self.config.allow_headers)
        response.headers["Access-Control-Max-Age"] = str(self.config.max_age)
        return response

    def _add_cors_headers(self, response: HTTPResponse, origin: str) -> bool:
        """Add the Allow-Origin family of headers. False if origin is refused."""
        if "*" in self.config.allow_origins:
            # "*" cannot be combined with credentials; echo the origin instead.
            allowed_origin = (origin or "*") if self.config.allow_credentials else "*"
        elif origin in self.config.allow_origins:
            allowed_origin = origin
        else:
            return False

        response.headers["Access-Control-Allow-Origin"] = allowed_origin
        if self.config.allow_credentials:
            response.headers["Access-Control-Allow-Credentials"] = "true"
        if self.config.expose_headers:
            response.headers["Access-Control-Expose-Headers"] = ", ".join(self.config.expose_headers)
        response.add_vary("Origin")
        return True
