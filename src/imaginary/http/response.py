"""
=============================================================================
HTTP RESPONSE BUILDING
=============================================================================

HTTPResponse is a plain data holder; ResponseBuilder is the fluent way to
make one; the helpers at the bottom cover the error responses the server
core sends itself.

    return (ResponseBuilder()
        .status(HTTPStatus.OK)
        .header("Cache-Control", "no-store")
        .json({"uptime": 42})
        .build())

Serialized form:

    HTTP/1.1 200 OK\\r\\n
    Cache-Control: no-store\\r\\n
    Content-Type: application/json; charset=utf-8\\r\\n
    Content-Length: 13\\r\\n          ← filled in by to_bytes()
    Date: Mon, 19 Oct 2026 ...\\r\\n   ← filled in by to_bytes()
    Server: imaginary/1.0.0\\r\\n      ← filled in by to_bytes()
    \\r\\n
    {"uptime":42}

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from http import HTTPStatus
from typing import Any, Dict, List, Union
import json


@dataclass
class HTTPResponse:
    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        return f"{self.version} {self.status.value} {self.status.phrase}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        self.headers[name] = value
        return self

    def add_vary(self, header: str) -> None:
        """Append a request header name to Vary without duplicating it."""
        vary = self.headers.get("Vary", "")
        if header not in [v.strip() for v in vary.split(",")]:
            self.headers["Vary"] = f"{vary}, {header}".lstrip(", ")

    def to_bytes(self, server_name: str = "imaginary") -> bytes:
        """Serialize for socket.sendall(), adding the mandatory headers."""
        response_headers = dict(self.headers)
        # Compressors rewrite the body after handlers set a length.
        response_headers["Content-Length"] = str(len(self.body))
        response_headers.setdefault("Date", format_http_date(datetime.now(timezone.utc)))
        response_headers.setdefault("Server", server_name)

        lines = [self.status_line]
        lines.extend(f"{name}: {value}" for name, value in response_headers.items())
        lines.append("")
        head = "\r\n".join(lines).encode("latin-1") + b"\r\n"
        return head + self.body


class ResponseBuilder:
    """Fluent builder for HTTPResponse."""

    def __init__(self):
        self._status = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body = b""

    def status(self, status: HTTPStatus) -> "ResponseBuilder":
        self._status = status
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def body(self, body: Union[str, bytes], content_type: str = "") -> "ResponseBuilder":
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        if content_type:
            self._headers["Content-Type"] = content_type
        return self

    def text(self, text: str) -> "ResponseBuilder":
        return self.body(text, "text/plain; charset=utf-8")

    def json(self, data: Any) -> "ResponseBuilder":
        return self.body(
            json.dumps(data, separators=(",", ":")),
            "application/json; charset=utf-8",
        )

    def close_connection(self) -> "ResponseBuilder":
        self._headers["Connection"] = "close"
        return self

    def build(self) -> HTTPResponse:
        return HTTPResponse(status=self._status, headers=self._headers, body=self._body)


def format_http_date(dt: datetime) -> str:
    """RFC 7231 HTTP-date, e.g. "Mon, 19 Oct 2026 08:00:00 GMT"."""
    return format_datetime(dt.astimezone(timezone.utc), usegmt=True)


# =============================================================================
# CONVENIENCE RESPONSES
# =============================================================================

def error_response(status: HTTPStatus, message: str = "") -> HTTPResponse:
    """JSON error body in the shape every error uses."""
    return (ResponseBuilder()
        .status(status)
        .json({"message": message or status.phrase, "status": status.value})
        .build())


def ok(data: Any) -> HTTPResponse:
    return ResponseBuilder().json(data).build()


def unauthorized(message: str = "Invalid or missing API key") -> HTTPResponse:
    return error_response(HTTPStatus.UNAUTHORIZED, message)


def forbidden(message: str = "Forbidden") -> HTTPResponse:
    return error_response(HTTPStatus.FORBIDDEN, message)


def not_found(message: str = "Not Found") -> HTTPResponse:
    return error_response(HTTPStatus.NOT_FOUND, message)


def method_not_allowed(allowed_methods: List[str]) -> HTTPResponse:
    response = error_response(HTTPStatus.METHOD_NOT_ALLOWED)
    response.headers["Allow"] = ", ".join(allowed_methods)
    return response


def internal_error(message: str = "Internal Server Error") -> HTTPResponse:
    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, message)
