"""
=============================================================================
GZIP COMPRESSION
=============================================================================

Enabled with -gzip. Compresses a response when all of these hold:

    1. the client sent Accept-Encoding: gzip
    2. the body is at least min_size bytes
    3. the Content-Type is text-like (JSON, SVG, plain text ...)
    4. nothing set Content-Encoding already
    5. the compressed body is actually smaller

JPEG, PNG, WebP and friends are already compressed; gzipping them costs
CPU and saves nothing, so they are never in the compressible set.

Innermost in the pipeline: it compresses exactly what the handler built.

=============================================================================
"""

from typing import FrozenSet, Iterable, Optional
import gzip

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


COMPRESSIBLE_TYPES: FrozenSet[str] = frozenset({
    "text/html",
    "text/css",
    "text/plain",
    "text/xml",
    "text/javascript",
    "application/json",
    "application/javascript",
    "application/xml",
    "image/svg+xml",
})


class CompressionMiddleware(Middleware):
    def __init__(
        self,
        min_size: int = 1024,
        level: int = 6,
        compressible_types: Optional[Iterable[str]] = None,
    ):
        self.min_size = min_size
        self.level = level
        self.compressible_types = (
            frozenset(compressible_types) if compressible_types is not None else COMPRESSIBLE_TYPES
        )

    @staticmethod
    def _accepts_gzip(request: HTTPRequest) -> bool:
        for coding in request.get_header("accept-encoding").lower().split(","):
            name, _, params = coding.strip().partition(";")
            if name.strip() in ("gzip", "*"):
                return params.replace(" ", "") not in ("q=0", "q=0.0")
        return False

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        response = next(request)
        response.add_vary("Accept-Encoding")

        if not self._accepts_gzip(request) or not self._should_compress(response):
            return response

        compressed = gzip.compress(response.body, compresslevel=self.level)
        if len(compressed) >= len(response.body):
            return response

        response.body = compressed
        response.headers["Content-Encoding"] = "gzip"
        return response

    def _should_compress(self, response: HTTPResponse) -> bool:
        if "Content-Encoding" in response.headers:
            return False
        if len(response.body) < self.min_size:
            return False
        content_type = response.headers.get("Content-Type", "")
        return content_type.split(";")[0].strip().lower() in self.compressible_types
