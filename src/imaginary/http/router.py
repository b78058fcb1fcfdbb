"""
=============================================================================
URL ROUTING
=============================================================================

Maps (method, path) to a handler function. Patterns support two kinds of
dynamic segment:

    /health              static, exact match
    /users/:id           one segment       → path_params["id"]
    /mount/*path         rest of the path  → path_params["path"]

Routes are tried in registration order; the first match wins. A path
that matches some route under a different method answers 405 with an
Allow header, anything else answers 404.

The server core registers only a handful of routes (index, health, the
mount); a processing engine adds its own through HTTPServer.get/post.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Pattern, Tuple
import logging
import re

from .request import HTTPRequest
from .response import HTTPResponse, method_not_allowed, not_found


logger = logging.getLogger(__name__)

Handler = Callable[[HTTPRequest], HTTPResponse]


@dataclass
class Route:
    path: str
    method: Optional[str]  # None matches any method
    handler: Handler
    _pattern: Optional[Pattern] = field(default=None, repr=False)
    _param_names: List[str] = field(default_factory=list, repr=False)


@dataclass
class RouteMatch:
    route: Route
    params: Dict[str, str]


class Router:
    def __init__(self):
        self._routes: List[Route] = []

    def add_route(self, path: str, handler: Handler, method: Optional[str] = None) -> Route:
        pattern, param_names = self._compile_pattern(path)
        route = Route(
            path=path,
            method=method.upper() if method else None,
            handler=handler,
            _pattern=pattern,
            _param_names=param_names,
        )
        self._routes.append(route)
        logger.debug(f"Registered route {route.method or 'ANY'} {path}")
        return route

    @staticmethod
    def _compile_pattern(path: str) -> Tuple[Pattern, List[str]]:
        """
        Compile "/mount/*path" into ^/mount/(?P<path>.*)$.

        ":name" captures a single segment, "*name" captures everything
        that follows and must be the last segment.
        """
        param_names: List[str] = []
        parts = ["^"]

        for segment in path.split("/"):
            if not segment:
                continue
            parts.append("/")
            if segment.startswith(":"):
                name = segment[1:]
                param_names.append(name)
                parts.append(f"(?P<{name}>[^/]+)")
            elif segment.startswith("*"):
                name = segment[1:] or "wildcard"
                param_names.append(name)
                # Wildcards also match the bare prefix ("/mount").
                parts[-1] = f"(?:/(?P<{name}>.*))?"
                break
            else:
                parts.append(re.escape(segment))

        if len(parts) == 1:
            parts.append("/")
        parts.append("$")
        return re.compile("".join(parts)), param_names

    @staticmethod
    def _normalize(path: str) -> str:
        return "/" + path.strip("/") if path != "/" else "/"

    def match(self, method: str, path: str) -> Optional[RouteMatch]:
        path = self._normalize(path)
        for route in self._routes:
            if route.method and route.method != method.upper():
                continue
            found = route._pattern.match(path)
            if found:
                params = {k: v or "" for k, v in found.groupdict().items()}
                return RouteMatch(route=route, params=params)
        return None

    def get_allowed_methods(self, path: str) -> List[str]:
        path = self._normalize(path)
        methods = {
            route.method
            for route in self._routes
            if route.method and route._pattern.match(path)
        }
        return sorted(methods)

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """Dispatch a request; this is the innermost handler of the pipeline."""
        found = self.match(request.method, request.path)
        if found:
            request.path_params = found.params
            return found.route.handler(request)

        allowed = self.get_allowed_methods(request.path)
        if allowed:
            return method_not_allowed(allowed)
        return not_found(f"No route matches {request.path}")

    # ─────────────────────────────────────────────────────────────────────
    # DECORATORS
    # ─────────────────────────────────────────────────────────────────────

    def route(self, path: str, method: Optional[str] = None) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.add_route(path, handler, method)
            return handler
        return decorator

    def get(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, "GET")

    def post(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, "POST")

    def routes(self) -> List[Route]:
        return list(self._routes)
