"""HTTP/1.1 protocol pieces: request parsing, responses, routing."""

from http import HTTPStatus

from .request import HTTPParseError, HTTPRequest, RequestParser, parse_request
from .response import (
    HTTPResponse,
    ResponseBuilder,
    error_response,
    forbidden,
    format_http_date,
    internal_error,
    method_not_allowed,
    not_found,
    ok,
    unauthorized,
)
from .router import Route, RouteMatch, Router

__all__ = [
    "HTTPStatus",
    "HTTPParseError",
    "HTTPRequest",
    "RequestParser",
    "parse_request",
    "HTTPResponse",
    "ResponseBuilder",
    "error_response",
    "forbidden",
    "format_http_date",
    "internal_error",
    "method_not_allowed",
    "not_found",
    "ok",
    "unauthorized",
    "Route",
    "RouteMatch",
    "Router",
]
