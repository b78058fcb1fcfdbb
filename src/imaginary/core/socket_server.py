"""
=============================================================================
LISTENING SOCKET AND ACCEPT LOOP
=============================================================================

Owns the listening socket: bind, listen, accept, and shutdown on SIGTERM
or SIGINT. Each accepted socket is wrapped in a Connection and handed to
a callback; what happens to it afterwards is the HTTP server's business.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        SocketServer                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   bind()            socket() ─ setsockopt() ─ bind() ─ listen()     │
    │     │               (+ wrap in SSLContext when TLS is enabled)      │
    │     ▼                                                                │
    │   start(callback)   install signal handlers, then                    │
    │     │                                                                │
    │     └──► while running:                                              │
    │              accept()          1s timeout so shutdown is noticed     │
    │              Connection(...)                                         │
    │              callback(conn)                                          │
    │                                                                      │
    │   shutdown()        running = False (safe from any thread)          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

bind() is separate from start() so that a busy port or unreadable TLS
material is reported before the caller commits to the blocking loop.

Transient accept() failures (out of file descriptors, out of buffers, a
client aborting mid-handshake) are logged and retried with a backoff
that doubles from 5ms up to 1s. Any other accept() error while running
propagates out of start(): the server never stops silently.

=============================================================================
"""

import errno
import logging
import signal
import socket
import ssl
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from ..config import ServerOptions
from .connection import Connection


logger = logging.getLogger(__name__)

ACCEPT_TIMEOUT = 1.0

TEMPORARY_ACCEPT_ERRORS = frozenset({
    errno.EMFILE,
    errno.ENFILE,
    errno.ENOBUFS,
    errno.ENOMEM,
    errno.ECONNABORTED,
})
BACKOFF_START = 0.005
BACKOFF_MAX = 1.0


class SocketServer:
    """
    TCP listener for the HTTP server.

    Usage:
        server = SocketServer(options, ssl_context)
        server.bind()                 # raises OSError
        server.start(handle)          # blocks until shutdown()
    """

    def __init__(self, options: ServerOptions, ssl_context: Optional[ssl.SSLContext] = None):
        self.options = options
        self.ssl_context = ssl_context

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._ready = threading.Event()
        self._original_handlers: Dict[int, object] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def server_address(self) -> Tuple[str, int]:
        """The address actually bound. Differs from the options for port 0."""
        if self._socket is None:
            return self.options.bind_address
        return self._socket.getsockname()[:2]

    def _create_socket(self, host: str) -> socket.socket:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        return sock

    def bind(self) -> None:
        """
        Create, bind and listen.

        Raises:
            OSError: The address is in use or not available.
        """
        if self._socket is not None:
            return

        host, port = self.options.bind_address
        sock = self._create_socket(host)
        try:
            sock.bind((host, port))
            sock.listen(self.options.backlog)
        except OSError:
            sock.close()
            raise

        if self.ssl_context is not None:
            # The handshake runs on the connection thread, not in accept().
            sock = self.ssl_context.wrap_socket(
                sock, server_side=True, do_handshake_on_connect=False
            )

        sock.settimeout(ACCEPT_TIMEOUT)
        self._socket = sock

    def _setup_signals(self) -> None:
        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, shutting down")
            self.shutdown()

        # signal.signal() only works on the main thread; servers started
        # from a test thread are stopped through shutdown() instead.
        if threading.current_thread() is not threading.main_thread():
            return
        for sig in (signal.SIGTERM, signal.SIGINT):
            self._original_handlers[sig] = signal.signal(sig, shutdown_handler)

    def _restore_signals(self) -> None:
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def start(self, connection_handler: Callable[[Connection], None]) -> None:
        """Accept connections until shutdown() is called. Blocks."""
        self.bind()
        self._running = True
        self._setup_signals()

        host, port = self.server_address
        scheme = "https" if self.ssl_context else "http"
        logger.info(f"Listening on {scheme}://{host or '*'}:{port}")
        self._ready.set()

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]) -> None:
        """
        Raises:
            OSError: accept() failed for a reason that retrying won't fix.
        """
        delay = 0.0
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except ssl.SSLError as e:
                logger.debug(f"Rejected TLS client: {e}")
                continue
            except OSError as e:
                if not self._running:
                    break  # socket closed by shutdown
                if e.errno not in TEMPORARY_ACCEPT_ERRORS:
                    logger.error(f"Accept failed, stopping: {e}")
                    raise
                delay = min(delay * 2 or BACKOFF_START, BACKOFF_MAX)
                logger.warning(f"Accept error: {e}; retrying in {delay * 1000:.0f}ms")
                time.sleep(delay)
                continue

            delay = 0.0
            conn = Connection(
                socket=client_socket,
                address=client_address[:2],
                timeout=self.options.read_timeout,
                keep_alive_timeout=self.options.keep_alive_timeout,
                max_request_size=self.options.max_request_size,
            )
            connection_handler(conn)

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the accept loop is running."""
        return self._ready.wait(timeout)

    def shutdown(self) -> None:
        """Stop the accept loop. Idempotent."""
        self._running = False

    def _cleanup(self) -> None:
        self._running = False
        self._restore_signals()
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
        self._ready.clear()
        logger.info("Socket server stopped")
