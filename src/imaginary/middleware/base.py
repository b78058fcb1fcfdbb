"""
=============================================================================
MIDDLEWARE CONTRACT AND PIPELINE
=============================================================================

A middleware is a callable taking the request and the next handler:

    class AddHeader(Middleware):
        def __call__(self, request, next):
            response = next(request)          # continue the chain
            response.set_header("X-Seen", "1")
            return response

Returning without calling next() short-circuits the chain; that is how
the API key check and the throttle reject requests.

The pipeline wraps middleware like onion layers. The first one added is
the outermost, so it sees the request first and the response last:

    ┌──────────────────────────────────────────────────────┐
    │ AccessLog                                            │
    │  ┌────────────────────────────────────────────────┐  │
    │  │ CORS                                           │  │
    │  │  ┌──────────────────────────────────────────┐  │  │
    │  │  │ ...                                      │  │  │
    │  │  │  ┌────────────────────────────────────┐  │  │  │
    │  │  │  │ router.handle                      │  │  │  │
    │  │  │  └────────────────────────────────────┘  │  │  │
    │  │  └──────────────────────────────────────────┘  │  │
    │  └────────────────────────────────────────────────┘  │
    └──────────────────────────────────────────────────────┘

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Callable, Iterator, List
import logging

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)

NextHandler = Callable[[HTTPRequest], HTTPResponse]


class Middleware(ABC):
    @abstractmethod
    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        """Handle the request, usually by calling next(request)."""

    @property
    def name(self) -> str:
        return self.__class__.__name__


class MiddlewarePipeline:
    def __init__(self):
        self._middleware: List[Middleware] = []

    def add(self, middleware: Middleware) -> "MiddlewarePipeline":
        self._middleware.append(middleware)
        logger.debug(f"Added middleware: {middleware.name}")
        return self

    def wrap(self, handler: NextHandler) -> NextHandler:
        """
        Build the chain around the final handler.

        Wrapping happens in reverse so the first middleware added ends up
        outermost: [A, B, C] + h becomes A → B → C → h.
        """
        current = handler
        for middleware in reversed(self._middleware):
            current = self._bind(middleware, current)
        return current

    @staticmethod
    def _bind(middleware: Middleware, next_handler: NextHandler) -> NextHandler:
        def wrapped(request: HTTPRequest) -> HTTPResponse:
            return middleware(request, next_handler)
        return wrapped

    @property
    def names(self) -> List[str]:
        return [mw.name for mw in self._middleware]

    def __len__(self) -> int:
        return len(self._middleware)

    def __iter__(self) -> Iterator[Middleware]:
        return iter(self._middleware)
