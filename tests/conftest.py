"""
pytest configuration and fixtures.
"""

import socket
import threading
from typing import Generator, Optional

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from imaginary import HTTPServer, ServerOptions
from imaginary.http import HTTPRequest


def build_request(
    path: str = "/",
    method: str = "GET",
    headers: Optional[dict] = None,
    query: Optional[dict] = None,
    body: bytes = b"",
) -> HTTPRequest:
    """Build an HTTPRequest without going through the parser."""
    return HTTPRequest(
        method=method,
        path=path,
        headers={k.lower(): v for k, v in (headers or {}).items()},
        query_params={k: [v] for k, v in (query or {}).items()},
        body=body,
        client_address=("127.0.0.1", 54321),
    )


@pytest.fixture
def make_request():
    """Factory for in-memory requests: make_request("/health", headers={...})."""
    return build_request


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request for an image in the mount."""
    return (
        b"GET /mount/cats/tabby.jpg?key=s3cret HTTP/1.1\r\n"
        b"Host: localhost:8088\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept-Encoding: gzip\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request carrying image bytes."""
    body = b"\xff\xd8\xff\xe0fake-jpeg"
    return (
        b"POST /resize?width=300 HTTP/1.1\r\n"
        b"Host: localhost:8088\r\n"
        b"Content-Type: image/jpeg\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def no_env() -> dict:
    """An empty environment, so the real PORT never leaks into a test."""
    return {}


class LiveServer:
    """Runs an HTTPServer on a background thread."""

    def __init__(self, server: HTTPServer):
        self.server = server
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.server.server_address[1]

    def start(self) -> "LiveServer":
        # Bind up front so the port is known and errors surface here.
        self.server.bind()
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()
        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")
        return self

    def stop(self) -> None:
        self.server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)


@pytest.fixture
def live_server_factory() -> Generator:
    """Start servers for ServerOptions; all are stopped after the test."""
    started = []

    def factory(options: ServerOptions, engine=None) -> LiveServer:
        server = HTTPServer(options)
        if engine is not None:
            engine(server)
        live = LiveServer(server).start()
        started.append(live)
        return live

    yield factory

    for live in started:
        live.stop()
