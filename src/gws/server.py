"""
=============================================================================
HTTP SERVER
=============================================================================

Ties the transport (SocketServer, ThreadPool, Connection) to the HTTP
layer (RequestParser, Router, middleware) and writes responses back.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        REQUEST LIFECYCLE                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  accept ──► worker thread ──► read request (read_timeout)            │
    │                                   │                                  │
    │                              parse (400/405/413/431/505)             │
    │                                   │                                  │
    │                      global middleware (access log, CSRF)            │
    │                                   │                                  │
    │                          router ──► route chain ──► handler          │
    │                                   │                                  │
    │           write header block, then stream the body (write_timeout)   │
    │                                   │                                  │
    │                    keep-alive? ──► next request on the same socket   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The middleware around the router is wrapped once, on first use, and can
not be changed afterwards: every worker thread shares the same chain.

=============================================================================
"""

import logging
from typing import Optional

from .config import ServerConfig
from .core import SocketServer, Connection, ThreadPool, RequestTooLarge
from .core.connection import ConnectionState
from .http import (
    HTTPRequest, RequestParser, HTTPParseError,
    HTTPResponse, HTTPStatus, Router, error, internal_error,
)
from .middleware import MiddlewarePipeline, Middleware, NextHandler


logger = logging.getLogger(__name__)


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Root logging setup shared by the CLI and HTTPServer.run()."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    logging.getLogger("gws").setLevel(numeric)


class HTTPServer:
    """
    Threaded HTTP/1.1 server.

        server = HTTPServer(config)
        server.use(LoggingMiddleware())
        server.router.handle("/", home)
        server.run()

    handle() runs one parsed request through the middleware and router
    without any socket, which is what the tests use.
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig()
        self.config.validate()

        self._socket_server = SocketServer(self.config)
        self._thread_pool = ThreadPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
            queue_size=self.config.queue_size,
        )
        self._parser = RequestParser(
            max_request_size=self.config.max_request_size,
            max_header_bytes=self.config.max_header_bytes,
        )
        self._router = Router()
        self._middleware = MiddlewarePipeline()
        self._handler: Optional[NextHandler] = None
        self._running = False

    # =========================================================================
    # COMPOSITION
    # =========================================================================

    def use(self, middleware: Middleware) -> "HTTPServer":
        """Add middleware around the whole router; first added is outermost."""
        if self._handler is not None:
            raise RuntimeError("Middleware cannot be added after the server has started")
        self._middleware.add(middleware)
        return self

    @property
    def router(self) -> Router:
        return self._router

    @property
    def address(self):
        return self._socket_server.address

    def build(self) -> NextHandler:
        """The complete handler: global middleware around the router, built once."""
        if self._handler is None:
            self._handler = self._middleware.wrap(self._router)
        return self._handler

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """
        Produce the response for `request`.

        Never raises: request errors found late (a malformed form body)
        become their status code, anything else a logged 500.
        """
        handler = self.build()
        try:
            return handler(request)
        except HTTPParseError as e:
            return error(HTTPStatus(e.status_code), str(e))
        except Exception as e:
            logger.exception(f"Handler error for {request.method} {request.raw_path}: {e}")
            return internal_error()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self, host: Optional[str] = None, port: Optional[int] = None):
        """Serve until SIGINT/SIGTERM or shutdown(). Raises OSError if binding fails."""
        if host:
            self.config.host = host
        if port is not None:
            self.config.port = port

        self.build()
        self._running = True
        self._thread_pool.start()

        logger.info(
            f"Starting {self.config.server_name} on {self.config.listen} "
            f"({self.config.min_workers}-{self.config.max_workers} workers)"
        )
        for route in self._router.routes():
            logger.debug(f"Route {route.pattern} -> {route.name}")

        try:
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            self._shutdown()

    def shutdown(self):
        """Ask a running server to stop; run() returns once it has."""
        self._socket_server.shutdown()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        return self._socket_server.wait_until_ready(timeout)

    def _shutdown(self):
        logger.info(f"Stopping {self.config.server_name}")
        self._running = False
        self._thread_pool.shutdown(wait=True, timeout=self.config.write_timeout)
        logger.info("Server stopped")

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        if not self._thread_pool.submit(self._process_connection, conn):
            logger.warning(f"[{conn.id}] Thread pool full, rejecting connection")
            with conn:
                self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server overloaded")

    def _process_connection(self, conn: Connection):
        """The keep-alive loop for one connection (worker thread)."""
        with conn:
            while self._running:
                request = self._next_request(conn)
                if request is None:
                    return
                conn.state = ConnectionState.PROCESSING
                if not self._write_response(conn, request, self.handle(request)):
                    return
                conn.set_keep_alive()

    def _next_request(self, conn: Connection) -> Optional[HTTPRequest]:
        """
        Read and parse the next request on `conn`. None means the connection
        is finished: the peer left, went idle, or was sent an error.
        """
        try:
            raw = conn.read_request()
            if raw is None:
                return None
            return self._parser.parse(raw, conn.address)
        except TimeoutError:
            self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
        except (RequestTooLarge, HTTPParseError) as e:
            self._send_error(conn, HTTPStatus(e.status_code), str(e))
        return None

    def _write_response(self, conn: Connection, request: HTTPRequest, response: HTTPResponse) -> bool:
        """
        Send `response`, streaming its body. Returns True if the connection
        may be reused for another request.
        """
        response.version = request.version if request.version in ("HTTP/1.0", "HTTP/1.1") else "HTTP/1.1"

        keep_alive = self.config.keep_alive and request.is_keep_alive
        if response.is_streaming and response.version != "HTTP/1.1":
            keep_alive = False  # the body ends when the connection does
        if response.headers.get("Connection", "").lower() == "close":
            keep_alive = False

        if keep_alive:
            response.headers.setdefault("Connection", "keep-alive")
            response.headers.setdefault("Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}")
        else:
            response.headers["Connection"] = "close"

        chunks = response.serialize(
            self.config.server_name,
            include_body=request.method != "HEAD",
        )
        try:
            for data in chunks:
                if not conn.send(data):
                    return False
        except Exception as e:
            # headers are already on the wire; all we can do is cut the body short
            logger.exception(f"[{conn.id}] Error while streaming {request.method} {request.raw_path}: {e}")
            return False
        finally:
            chunks.close()

        return keep_alive

    def _send_error(self, conn: Connection, status: HTTPStatus, message: str):
        """Answer a request that never reached a handler, then let the connection close."""
        response = error(status, message)
        response.headers["Connection"] = "close"
        conn.send(response.to_bytes(self.config.server_name))
