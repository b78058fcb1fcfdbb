"""
=============================================================================
ACCESS LOG
=============================================================================

One line per request on the "imaginary.access" logger, in a shape close
to the Apache common log format plus the processing time:

    10.0.0.7 - - [19/Oct/2026:08:00:00 +0000] "GET /mount/cat.jpg" 200 48213 3.21ms

Outermost in the pipeline so rejected requests (401, 429) are logged too.
Every response carries an X-Request-ID matching the ID in the log line.

=============================================================================
"""

from dataclasses import dataclass
from typing import Iterable, Optional
import logging
import time
import uuid

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger("imaginary.access")


@dataclass
class RequestLog:
    request_id: str
    method: str
    path: str
    client_ip: str
    status_code: int
    content_length: int
    duration_ms: float
    timestamp: str

    def to_text(self) -> str:
        return (
            f'{self.client_ip or "-"} - - [{self.timestamp}] '
            f'"{self.method} {self.path}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms'
        )


class LoggingMiddleware(Middleware):
    def __init__(self, log_level: int = logging.INFO, skip_paths: Optional[Iterable[str]] = None):
        """
        Args:
            log_level: Level access lines are logged at.
            skip_paths: Paths not worth logging, such as a load balancer's /health.
        """
        self.log_level = log_level
        self.skip_paths = set(skip_paths or ())

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        request_id = uuid.uuid4().hex[:8]
        start = time.perf_counter()

        try:
            response = next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                f"Request failed: {request.method} {request.path} "
                f"- {type(e).__name__}: {e} ({duration_ms:.2f}ms)"
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        if request.path not in self.skip_paths:
            entry = RequestLog(
                request_id=request_id,
                method=request.method,
                path=request.path,
                client_ip=request.client_address[0],
                status_code=response.status.value,
                content_length=len(response.body),
                duration_ms=duration_ms,
                timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
            )
            logger.log(self.log_level, entry.to_text())

        return response
