"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns the raw bytes read from a connection into an HTTPRequest.

    b"GET /mount/cat.jpg?key=s3cret HTTP/1.1\\r\\n"   ← request line
    b"Host: localhost:8088\\r\\n"                      ← header fields
    b"Accept-Encoding: gzip\\r\\n"
    b"\\r\\n"                                          ← end of head
    b"..."                                            ← body (Content-Length)

Header names are lowercased at parse time. A field sent more than once is
joined with ", " into a single value, except Content-Length, where two
different values make the request ambiguous and it is refused.

    Failure                                   Status
    ────────────────────────────────────────  ──────
    bad request line, header or length        400
    method token this server does not speak   405
    request bigger than max_request_size      413
    protocol other than HTTP/1.0 or 1.1       505

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlsplit
import re


SUPPORTED_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"})
SUPPORTED_VERSIONS = ("HTTP/1.0", "HTTP/1.1")

# RFC 9110 token characters, used for both methods and field names.
_TOKEN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_VERSION = re.compile(r"^HTTP/\d\.\d$")

HEAD_TERMINATOR = b"\r\n\r\n"


class HTTPParseError(Exception):
    """A request that cannot be served, with the status to answer it."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    method: str
    path: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, List[str]] = field(default_factory=dict)
    body: bytes = b""
    path_params: Dict[str, str] = field(default_factory=dict)
    client_address: Tuple[str, int] = ("", 0)

    def get_header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of a query parameter."""
        values = self.query_params.get(name)
        if not values:
            return default
        return values[0]

    @property
    def host(self) -> str:
        return self.get_header("host")

    @property
    def user_agent(self) -> str:
        return self.get_header("user-agent")

    @property
    def content_length(self) -> int:
        raw = self.get_header("content-length", "0")
        return int(raw) if raw.isdigit() else 0

    @property
    def is_keep_alive(self) -> bool:
        """
        HTTP/1.1 keeps the connection open unless told "close";
        HTTP/1.0 closes it unless told "keep-alive".
        """
        tokens = {t.strip() for t in self.get_header("connection").lower().split(",")}
        if self.version == "HTTP/1.0":
            return "keep-alive" in tokens
        return "close" not in tokens


def _split_target(target: str) -> Tuple[str, Dict[str, List[str]]]:
    parts = urlsplit(target)
    path = unquote(parts.path) or "/"
    if ".." in path.split("/"):
        raise HTTPParseError(f"Invalid path {path!r}: dot-dot segment")
    return path, parse_qs(parts.query, keep_blank_values=True)


def _request_line(line: str) -> Tuple[str, str, str]:
    pieces = line.split(" ")
    if len(pieces) != 3 or not all(pieces):
        raise HTTPParseError(f"Invalid request line: {line!r}")

    method, target, version = pieces
    if not _TOKEN.match(method) or not _VERSION.match(version):
        raise HTTPParseError(f"Invalid request line: {line!r}")
    if method not in SUPPORTED_METHODS:
        raise HTTPParseError(f"Method not supported: {method}", status_code=405)
    if version not in SUPPORTED_VERSIONS:
        raise HTTPParseError(f"HTTP version not supported: {version}", status_code=505)
    return method, target, version


def _header_fields(lines: List[str]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for line in lines:
        name, sep, value = line.partition(":")
        if not sep or not _TOKEN.match(name):
            raise HTTPParseError(f"Invalid header line: {line!r}")

        name = name.lower()
        value = value.strip()
        if name not in headers:
            headers[name] = value
        elif name == "content-length":
            if headers[name] != value:
                raise HTTPParseError("Conflicting Content-Length headers")
        else:
            headers[name] = f"{headers[name]}, {value}"
    return headers


def _declared_length(headers: Dict[str, str]) -> int:
    raw = headers.get("content-length", "0")
    if not raw.isdigit():
        raise HTTPParseError(f"Invalid Content-Length: {raw!r}")
    return int(raw)


class RequestParser:
    """
    Parses one complete request, as buffered by Connection.read_request().

    Dot-dot path segments are refused here, before routing, so no handler
    ever sees one.
    """

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(self, data: bytes, client_address: Tuple[str, int] = ("", 0)) -> HTTPRequest:
        """
        Raises:
            HTTPParseError: The request is malformed or too large.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        head, sep, body = data.partition(HEAD_TERMINATOR)
        if not sep:
            raise HTTPParseError("Incomplete request: no end of headers")

        request_line, *field_lines = head.decode("latin-1").split("\r\n")
        method, target, version = _request_line(request_line)
        path, query_params = _split_target(target)
        headers = _header_fields(field_lines)

        length = _declared_length(headers)
        if len(body) < length:
            raise HTTPParseError(f"Incomplete body: {len(body)} of {length} bytes")

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query_params=query_params,
            body=body[:length],
            client_address=client_address,
        )


def parse_request(data: bytes, client_address: Tuple[str, int] = ("", 0)) -> HTTPRequest:
    """Parse with default limits."""
    return RequestParser().parse(data, client_address)
