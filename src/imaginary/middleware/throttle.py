"""
=============================================================================
CONCURRENCY THROTTLE
=============================================================================

Enabled with -concurrency N. Image processing is CPU and memory heavy,
so instead of limiting a request *rate* this bounds how many requests
are being processed at the same moment.

    ┌─────────────────────────────────────────────────────────────────────┐
    │             concurrency = 2, burst = 3                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   slots    [ req1 ][ req2 ]          ← processing                   │
    │   queue    [ req3 ][ req4 ][ req5 ]  ← waiting for a slot           │
    │   req6     ──► 429 Too Many Requests, Retry-After: 1                │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A queued request that does not get a slot within wait_timeout is
answered with 503, so a stuck handler cannot pin clients forever.

=============================================================================
"""

from http import HTTPStatus
import logging
import threading

from .base import Middleware, NextHandler
from ..config import ThrottleConfig
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, error_response


logger = logging.getLogger(__name__)


class ThrottleMiddleware(Middleware):
    def __init__(self, config: ThrottleConfig, wait_timeout: float = 30.0):
        """
        Args:
            config: concurrency > 0 slots, burst >= 1 queued waiters.
            wait_timeout: Seconds a queued request waits for a slot.
        """
        if not config.enabled:
            raise ValueError("throttle requires concurrency > 0")

        self.config = config
        self.wait_timeout = wait_timeout

        self._slots = threading.BoundedSemaphore(config.concurrency)
        self._lock = threading.Lock()
        self._waiting = 0

    @property
    def waiting(self) -> int:
        """Requests currently queued for a slot."""
        with self._lock:
            return self._waiting

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        if not self._slots.acquire(blocking=False):
            with self._lock:
                if self._waiting >= self.config.burst:
                    logger.debug(f"Throttled {request.method} {request.path}: queue full")
                    return self._too_many_requests()
                self._waiting += 1

            try:
                acquired = self._slots.acquire(timeout=self.wait_timeout)
            finally:
                with self._lock:
                    self._waiting -= 1

            if not acquired:
                logger.warning(f"Gave up waiting for a slot: {request.method} {request.path}")
                return error_response(HTTPStatus.SERVICE_UNAVAILABLE, "Server busy, try again later")

        try:
            return next(request)
        finally:
            self._slots.release()

    def _too_many_requests(self) -> HTTPResponse:
        response = error_response(
            HTTPStatus.TOO_MANY_REQUESTS,
            f"Too many requests: {self.config.concurrency} processing, "
            f"{self.config.burst} queued",
        )
        response.headers["Retry-After"] = "1"
        return response
