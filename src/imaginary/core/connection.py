"""
=============================================================================
CLIENT CONNECTION
=============================================================================

Wraps one accepted client socket: buffers reads until a full request is
available, applies the read and keep-alive timeouts, and closes cleanly.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     CONNECTION LIFECYCLE                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   NEW ──► HANDSHAKE (TLS only) ──► READING ──► PROCESSING           │
    │                                       ▲             │                │
    │                                       │             ▼                │
    │                                  KEEP_ALIVE ◄── WRITING              │
    │                                                     │                │
    │                                                     ▼                │
    │                                                  CLOSED              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The first request gets the full read timeout. Subsequent requests on a
kept-alive connection get the shorter keep-alive timeout, and an idle
keep-alive connection is closed silently rather than answered with 408.

=============================================================================
"""


from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple
import logging
import socket
import ssl
import time
import uuid


logger = logging.getLogger(__name__)

HEAD_TERMINATOR = b"\r\n\r\n"


class ConnectionState(Enum):
    NEW = "new"
    HANDSHAKE = "handshake"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSED = "closed"


class RequestTooLarge(ValueError):
    """The client sent more than max_request_size bytes."""


class ClientGone(Exception):
    """The peer closed or reset the connection mid-read."""


def declared_length(head: bytes) -> int:
    """Content-Length from a raw request head; the parser validates it later."""
    for line in head.split(b"\r\n")[1:]:
        name, _, value = line.partition(b":")
        if name.strip().lower() == b"content-length":
            value = value.strip()
            return int(value) if value.isdigit() else 0
    return 0


@dataclass
class Connection:
    """
    One client connection.

    Attributes:
        socket: The client socket, possibly an ssl.SSLSocket.
        address: Client (ip, port).
        id: Short identifier used in log lines.
        requests_handled: Requests fully read on this connection.
    """

    socket: socket.socket
    address: Tuple[str, int]
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: ConnectionState = ConnectionState.NEW
    opened_at: float = field(default_factory=time.monotonic)
    requests_handled: int = 0

    chunk_size: int = 64 * 1024
    timeout: float = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024

    _pending: bytearray = field(default_factory=bytearray, repr=False)

    def __post_init__(self):
        self.socket.settimeout(self.timeout)

    @property
    def is_tls(self) -> bool:
        return isinstance(self.socket, ssl.SSLSocket)

    @property
    def age(self) -> float:
        return time.monotonic() - self.opened_at

    def handshake(self) -> bool:
        """
        Complete the TLS handshake, if this is a TLS connection.

        The listening socket defers the handshake to the connection thread.

        Returns:
            False when the handshake failed and the connection is unusable.
        """
        if not self.is_tls:
            return True

        self.state = ConnectionState.HANDSHAKE
        try:
            self.socket.do_handshake()
        except OSError as e:
            # ssl.SSLError included
            logger.debug(f"[{self.id}] TLS handshake failed: {e}")
            return False
        return True

    def _fill(self, wanted: int) -> None:
        """Read until at least `wanted` bytes are pending."""
        while len(self._pending) < wanted:
            try:
                chunk = self.socket.recv(self.chunk_size)
            except (ConnectionResetError, BrokenPipeError):
                chunk = b""
            if not chunk:
                raise ClientGone()
            self._pending += chunk
            if len(self._pending) > self.max_request_size:
                raise RequestTooLarge(f"Request too large: more than {self.max_request_size} bytes")

    def _fill_head(self) -> int:
        """Read until the end of the request head; returns its offset."""
        while True:
            end = self._pending.find(HEAD_TERMINATOR)
            if end != -1:
                return end
            self._fill(len(self._pending) + 1)

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete HTTP request.

        Bytes the client pipelined after it stay buffered for the next call.

        Returns:
            The request bytes, or None when the client closed the
            connection or a keep-alive connection went idle.

        Raises:
            TimeoutError: The first request did not arrive in time.
            RequestTooLarge: The request exceeds max_request_size.
        """
        idle = self.requests_handled > 0
        self.state = ConnectionState.READING
        self.socket.settimeout(self.keep_alive_timeout if idle else self.timeout)

        try:
            head_end = self._fill_head()
            body_start = head_end + len(HEAD_TERMINATOR)
            total = body_start + declared_length(bytes(self._pending[:head_end]))
            try:
                self._fill(total)
            except ClientGone:
                # Short body: hand over what arrived and let the parser reject it.
                total = len(self._pending)
        except ClientGone:
            return None
        except socket.timeout:
            if idle:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")
        finally:
            self.socket.settimeout(self.timeout)

        request = bytes(self._pending[:total])
        del self._pending[:total]
        self.requests_handled += 1
        self.state = ConnectionState.PROCESSING
        return request

    def send_response(self, data: bytes) -> bool:
        """
        Send a serialized response.

        Returns:
            False when the client went away.
        """
        self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
        except OSError as e:
            logger.debug(f"[{self.id}] Send failed: {e}")
            return False
        return True

    def set_keep_alive(self) -> None:
        self.state = ConnectionState.KEEP_ALIVE

    def close(self) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED

        for step in (lambda: self.socket.shutdown(socket.SHUT_WR), self.socket.close):
            try:
                step()
            except OSError:
                pass  # peer already gone

        logger.debug(
            f"[{self.id}] Closed after {self.requests_handled} request(s), {self.age:.1f}s"
        )

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
