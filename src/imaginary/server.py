"""
=============================================================================
HTTP SERVER
=============================================================================

The server the bootstrap launches. It is configured only through a
ServerOptions record; every optional feature maps to one middleware:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     REQUEST PATH                                    │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   SocketServer.accept()                                              │
    │        │                                                             │
    │        ▼  one daemon thread per connection                           │
    │   Connection.read_request() ─► RequestParser.parse()                 │
    │        │                                                             │
    │        ▼                                                             │
    │   LoggingMiddleware          always                                  │
    │   CORSMiddleware             -cors                                   │
    │   CacheControlMiddleware     -http-cache-ttl != -1                   │
    │   APIKeyMiddleware           -key                                    │
    │   ThrottleMiddleware         -concurrency > 0                        │
    │   CompressionMiddleware      -gzip                                   │
    │        │                                                             │
    │        ▼                                                             │
    │   Router: /  /health  /mount/*path  + engine routes                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
ENGINE HOOK
=============================================================================

Image transformation is not part of this package. A processing engine
plugs in by registering routes (and middleware, if it needs any) on the
server before it starts:

    def engine(server):
        @server.post("/resize")
        def resize(request):
            ...

    serve(options, engine=engine)

=============================================================================
"""

import logging
import ssl
import threading
from http import HTTPStatus
from typing import Callable, Optional, Tuple

from .config import ServerOptions
from .core import Connection, RequestTooLarge, SocketServer
from .errors import ServerRuntimeFailure, ServerStartFailure
from .handlers import MOUNT_PREFIX, HealthHandler, StaticFileHandler, index
from .http import HTTPParseError, HTTPRequest, HTTPResponse, RequestParser, Router, error_response, internal_error
from .middleware import (
    APIKeyMiddleware,
    CacheControlMiddleware,
    CompressionMiddleware,
    CORSMiddleware,
    LoggingMiddleware,
    Middleware,
    MiddlewarePipeline,
    ThrottleMiddleware,
)


logger = logging.getLogger(__name__)

Engine = Callable[["HTTPServer"], None]


def build_pipeline(options: ServerOptions) -> MiddlewarePipeline:
    """Middleware for the features the options switch on, outermost first."""
    pipeline = MiddlewarePipeline()
    pipeline.add(LoggingMiddleware())

    if options.cors:
        pipeline.add(CORSMiddleware())
    if options.cache_enabled:
        pipeline.add(CacheControlMiddleware(options.http_cache_ttl))
    if options.api_key:
        pipeline.add(APIKeyMiddleware(options.api_key))
    if options.throttle.enabled:
        pipeline.add(ThrottleMiddleware(options.throttle, wait_timeout=options.read_timeout))
    if options.gzip:
        pipeline.add(CompressionMiddleware())

    return pipeline


def create_ssl_context(options: ServerOptions) -> Optional[ssl.SSLContext]:
    """
    Load the TLS certificate pair, or return None for plain HTTP.

    Raises:
        ServerStartFailure: Only one of the two files is set, or the
            material cannot be read.
    """
    if not options.cert_file and not options.key_file:
        return None
    if not options.tls_enabled:
        raise ServerStartFailure("TLS requires both a certificate and a key file")

    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    try:
        context.load_cert_chain(options.cert_file, options.key_file)
    except OSError as e:
        # ssl.SSLError is an OSError too
        raise ServerStartFailure(f"cannot load TLS certificate: {e}") from e
    return context


class HTTPServer:
    """
    HTTP/1.1 server for the image API.

    Usage:
        server = HTTPServer(options)
        server.run()              # blocks until SIGTERM/SIGINT or shutdown()
    """

    def __init__(self, options: ServerOptions):
        self.options = options
        self._parser = RequestParser(max_request_size=options.max_request_size)
        self._router = Router()
        self._middleware = build_pipeline(options)
        self._socket_server: Optional[SocketServer] = None
        self._handler: Optional[Callable[[HTTPRequest], HTTPResponse]] = None
        self._running = False

        self._register_builtin_routes()

    def _register_builtin_routes(self) -> None:
        self._router.add_route("/", index, "GET")
        self._router.add_route("/health", HealthHandler().handle, "GET")
        if self.options.mount:
            static = StaticFileHandler(self.options.mount)
            self._router.add_route(f"{MOUNT_PREFIX}/*path", static.handle, "GET")

    # ─────────────────────────────────────────────────────────────────────
    # REGISTRATION (for processing engines)
    # ─────────────────────────────────────────────────────────────────────

    @property
    def router(self) -> Router:
        return self._router

    @property
    def middleware(self) -> MiddlewarePipeline:
        return self._middleware

    def use(self, middleware: Middleware) -> "HTTPServer":
        self._middleware.add(middleware)
        return self

    def route(self, path: str, method: Optional[str] = None):
        return self._router.route(path, method)

    def get(self, path: str):
        return self._router.get(path)

    def post(self, path: str):
        return self._router.post(path)

    # ─────────────────────────────────────────────────────────────────────
    # LIFECYCLE
    # ─────────────────────────────────────────────────────────────────────

    @property
    def server_address(self) -> Tuple[str, int]:
        if self._socket_server is None:
            return self.options.bind_address
        return self._socket_server.server_address

    def bind(self) -> None:
        """
        Load TLS material and bind the listening socket.

        Raises:
            ServerStartFailure: The port is unavailable or TLS is unusable.
        """
        if self._socket_server is not None:
            return

        socket_server = SocketServer(self.options, create_ssl_context(self.options))
        try:
            socket_server.bind()
        except OSError as e:
            host, port = self.options.bind_address
            raise ServerStartFailure(f"cannot listen on {host or '*'}:{port}: {e}") from e
        self._socket_server = socket_server

    def run(self) -> None:
        """
        Serve until shutdown. Blocks.

        Raises:
            ServerStartFailure: The port is unavailable or TLS is unusable.
            ServerRuntimeFailure: Accepting connections failed for good.
        """
        self.bind()
        self._handler = self._middleware.wrap(self._router.handle)
        self._running = True

        logger.debug(f"imaginary server listening on port {self.server_address[1]}")
        try:
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        except OSError as e:
            raise ServerRuntimeFailure(f"accept loop failed: {e}") from e
        finally:
            self._running = False
            self._socket_server = None
            logger.info("Server stopped")

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        socket_server = self._socket_server
        return socket_server is not None and socket_server.wait_until_ready(timeout)

    def shutdown(self) -> None:
        self._running = False
        if self._socket_server is not None:
            self._socket_server.shutdown()

    # ─────────────────────────────────────────────────────────────────────
    # CONNECTION HANDLING
    # ─────────────────────────────────────────────────────────────────────

    def _handle_connection(self, conn: Connection) -> None:
        thread = threading.Thread(
            target=self._process_connection,
            args=(conn,),
            name=f"conn-{conn.id}",
            daemon=True,
        )
        thread.start()

    def _process_connection(self, conn: Connection) -> None:
        """Keep-alive loop: read, dispatch, respond, repeat."""
        with conn:
            if not conn.handshake():
                return

            while self._running:
                try:
                    raw_request = conn.read_request()
                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                    return
                except RequestTooLarge as e:
                    self._send_error(conn, HTTPStatus.REQUEST_ENTITY_TOO_LARGE, str(e))
                    return
                except OSError as e:
                    logger.debug(f"[{conn.id}] Read failed: {e}")
                    return

                if raw_request is None:
                    return

                try:
                    request = self._parser.parse(raw_request, conn.address)
                except HTTPParseError as e:
                    self._send_error(conn, HTTPStatus(e.status_code), str(e))
                    return

                response = self._dispatch(conn, request)
                keep_alive = request.is_keep_alive and self._running
                if keep_alive:
                    response.headers.setdefault("Connection", "keep-alive")
                    response.headers.setdefault(
                        "Keep-Alive", f"timeout={int(self.options.keep_alive_timeout)}"
                    )
                else:
                    response.headers["Connection"] = "close"

                if not conn.send_response(response.to_bytes(self.options.server_name)):
                    return
                if not keep_alive:
                    return
                conn.set_keep_alive()

    def _dispatch(self, conn: Connection, request: HTTPRequest) -> HTTPResponse:
        try:
            return self._handler(request)
        except Exception:
            logger.exception(f"[{conn.id}] Handler error on {request.method} {request.path}")
            return internal_error()

    def _send_error(self, conn: Connection, status: HTTPStatus, message: str) -> None:
        response = error_response(status, message)
        response.headers["Connection"] = "close"
        conn.send_response(response.to_bytes(self.options.server_name))


def create_server(options: ServerOptions, engine: Optional[Engine] = None) -> HTTPServer:
    """Build a server and let the engine register its routes."""
    server = HTTPServer(options)
    if engine is not None:
        engine(server)
    return server


def serve(options: ServerOptions, engine: Optional[Engine] = None) -> None:
    """
    Run the HTTP server until it is interrupted.

    Returns normally after SIGTERM/SIGINT.

    Raises:
        ServerStartFailure: The server could not start listening.
        ServerRuntimeFailure: The server stopped accepting connections.
    """
    create_server(options, engine).run()
