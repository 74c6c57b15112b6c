"""
=============================================================================
SOCKET SERVER
=============================================================================

The TCP layer: bind, listen, accept, and hand every accepted socket to a
callback wrapped in a Connection.

    start(callback)
        ├──► create socket (SO_REUSEADDR, TCP_NODELAY, 1s accept timeout)
        ├──► bind + listen
        ├──► install SIGTERM/SIGINT handlers (main thread only)
        └──► accept loop until shutdown()
                 └──► callback(Connection(...))

The 1 second accept timeout is what lets the loop notice shutdown() from
a signal handler or another thread.

=============================================================================
"""

import signal
import socket
import logging
import threading
from contextlib import contextmanager, suppress
from typing import Callable, Iterator, Optional, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)

ConnectionCallback = Callable[[Connection], None]

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class SocketServer:
    """
    Listening socket plus accept loop.

        transport = SocketServer(config)
        transport.start(on_connection)   # blocks until shutdown()
    """

    ACCEPT_POLL_SECONDS = 1.0

    def __init__(self, config: ServerConfig):
        self.config = config
        self._listener: Optional[socket.socket] = None
        self._bound: Optional[Tuple[str, int]] = None
        self._accepting = False
        self._listening = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._accepting

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); the real port once bound to port 0."""
        return self._bound or (self.config.host, self.config.port)

    def _open_listener(self) -> socket.socket:
        family, _, _, _, sockaddr = socket.getaddrinfo(
            self.config.host, self.config.port, type=socket.SOCK_STREAM
        )[0]
        listener = socket.socket(family, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        listener.settimeout(self.ACCEPT_POLL_SECONDS)
        try:
            listener.bind(sockaddr)
            listener.listen(self.config.backlog)
        except OSError as e:
            listener.close()
            logger.error(f"Cannot listen on {self.config.listen}: {e}")
            raise
        return listener

    @contextmanager
    def _signals_stop_server(self) -> Iterator[None]:
        """SIGTERM (docker stop, systemd) and SIGINT (Ctrl+C) call shutdown()."""
        if threading.current_thread() is not threading.main_thread():
            # only the main thread may install signal handlers
            yield
            return

        def on_signal(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, stopping")
            self.shutdown()

        previous = {sig: signal.signal(sig, on_signal) for sig in SHUTDOWN_SIGNALS}
        try:
            yield
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

    def start(self, on_connection: ConnectionCallback):
        """Listen and accept until shutdown(). Raises OSError if the address is unusable."""
        self._listener = self._open_listener()
        self._bound = self._listener.getsockname()[:2]
        self._accepting = True
        logger.info(f"Server listening on {self._bound[0]}:{self._bound[1]}")

        try:
            with self._signals_stop_server():
                self._listening.set()
                self._serve(on_connection)
        finally:
            self._close_listener()

    def _serve(self, on_connection: ConnectionCallback):
        while self._accepting:
            try:
                client, peer = self._listener.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._accepting:
                    logger.error(f"accept() failed: {e}")
                return

            logger.debug(f"Connection from {peer[0]}:{peer[1]}")
            on_connection(self._wrap(client, peer[:2]))

    def _wrap(self, client: socket.socket, peer: Tuple[str, int]) -> Connection:
        limits = self.config
        return Connection(
            socket=client,
            address=peer,
            buffer_size=limits.buffer_size,
            read_timeout=limits.read_timeout,
            write_timeout=limits.write_timeout,
            keep_alive_timeout=limits.keep_alive_timeout,
            max_request_size=limits.max_request_size,
            max_header_bytes=limits.max_header_bytes,
        )

    def shutdown(self):
        """Stop accepting. Safe to call more than once, from any thread."""
        if self._accepting:
            logger.info("Stopping listener")
        self._accepting = False

    def _close_listener(self):
        if self._listener is not None:
            with suppress(OSError):
                self._listener.close()
            self._listener = None
        self._listening.clear()
        logger.info("Listener closed")

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the socket is listening (for tests and embedding)."""
        return self._listening.wait(timeout)
