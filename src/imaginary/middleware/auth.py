"""
=============================================================================
API KEY AUTHORIZATION
=============================================================================

Enabled with -key. Clients present the shared secret either way:

    GET /resize?width=300 HTTP/1.1
    API-Key: s3cret

    GET /resize?width=300&key=s3cret HTTP/1.1

A missing or wrong key is answered with 401 before the request reaches
the throttle, so unauthorized clients never occupy a slot. "/" and
"/health" stay public for load balancer health checks.

=============================================================================
"""

from typing import Iterable, Optional
import hmac
import logging

from .base import Middleware, NextHandler
from .cache import PUBLIC_PATHS
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, unauthorized


logger = logging.getLogger(__name__)

API_KEY_HEADER = "API-Key"
API_KEY_QUERY = "key"


class APIKeyMiddleware(Middleware):
    def __init__(self, api_key: str, public_paths: Optional[Iterable[str]] = None):
        if not api_key:
            raise ValueError("api_key must not be empty")
        self.api_key = api_key
        self.public_paths = frozenset(public_paths) if public_paths is not None else PUBLIC_PATHS

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        if request.path in self.public_paths:
            return next(request)

        presented = request.get_header(API_KEY_HEADER) or request.get_query(API_KEY_QUERY, "")
        if not presented or not hmac.compare_digest(presented.encode(), self.api_key.encode()):
            logger.debug(f"Rejected {request.method} {request.path}: bad API key")
            return unauthorized()

        return next(request)
