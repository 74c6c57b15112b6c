"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket: buffered request reads, timeouts, and a
clean TCP close.

=============================================================================
TIMEOUTS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │  phase                      limit                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │  waiting for a keep-alive   keep_alive_timeout  (idle → close)      │
    │  request                                                            │
    │  reading one request        read_timeout        (whole request,     │
    │  (headers + body)                                 not per recv)     │
    │  each send of the response  write_timeout                           │
    └─────────────────────────────────────────────────────────────────────┘

read_timeout is a deadline for the complete request, so a client that
trickles one byte at a time cannot hold a worker thread indefinitely.

=============================================================================
LIMITS
=============================================================================

    header block > max_header_bytes   → RequestTooLarge(431)
    whole request > max_request_size  → RequestTooLarge(413)

=============================================================================
"""

import re
import time
import socket
import secrets
import logging
from enum import Enum
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Optional

from ..http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)

HEADER_END = b"\r\n\r\n"

# bounds on discarding unread input while closing
DRAIN_SECONDS = 0.5
DRAIN_BYTES = 64 * 1024

_CONTENT_LENGTH = re.compile(rb"^content-length[ \t]*:[ \t]*(\d+)[ \t]*$", re.IGNORECASE | re.MULTILINE)


class RequestTooLarge(Exception):
    """A request exceeded a size limit before it could be parsed."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class ConnectionState(Enum):
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


def declared_length(head: bytes) -> int:
    """Content-Length from a raw header block; 0 when missing or not a number."""
    match = _CONTENT_LENGTH.search(head.replace(b"\r\n", b"\n"))
    return int(match.group(1)) if match else 0


@dataclass
class Connection:
    """
    A client connection.

        with Connection(sock, addr, read_timeout=15.0) as conn:
            data = conn.read_request()
            conn.send(response_bytes)
        # closed here, whatever happened inside
    """

    socket: socket.socket
    address: tuple[str, int]

    id: str = field(default_factory=lambda: secrets.token_hex(4))
    state: ConnectionState = ConnectionState.NEW
    requests_handled: int = 0

    buffer_size: int = 8192
    read_timeout: float = 15.0
    write_timeout: float = 20.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024
    max_header_bytes: int = 1 << 20

    _pending: bytearray = field(default_factory=bytearray, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)

    # ─────────────────────────────────────────────────────────────────────
    # reading
    # ─────────────────────────────────────────────────────────────────────

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete HTTP request (headers plus Content-Length body).

        Returns None when the client closed the connection, or went idle
        between keep-alive requests. Bytes beyond the request stay buffered
        for the next call (pipelining).

        Raises:
            TimeoutError: the request was not complete within read_timeout.
            RequestTooLarge: a size limit was exceeded.
        """
        self.state = ConnectionState.READING

        if not self._pending and not self._await_first_bytes():
            return None

        deadline = time.monotonic() + self.read_timeout
        try:
            head_len = self._read_head(deadline)
            if head_len is None:
                return None

            body_len = declared_length(bytes(self._pending[:head_len]))
            total = head_len + len(HEADER_END) + body_len
            if total > self.max_request_size:
                raise RequestTooLarge("Request too large", HTTPStatus.PAYLOAD_TOO_LARGE)

            # a peer that closes mid-body leaves a short body for the parser
            while len(self._pending) < total and self._fill(deadline):
                pass
        except socket.timeout:
            raise TimeoutError("Request read timeout") from None

        request = bytes(self._pending[:total])
        del self._pending[:total]
        self.requests_handled += 1
        return request

    def _await_first_bytes(self) -> bool:
        """Wait for the next request to start. False on close or keep-alive idle."""
        idle = self.requests_handled > 0
        self.socket.settimeout(self.keep_alive_timeout if idle else self.read_timeout)
        try:
            chunk = self._recv()
        except socket.timeout:
            if idle:
                logger.debug(f"[{self.id}] Idle keep-alive connection timed out")
                return False
            raise TimeoutError("Request read timeout") from None
        self._pending += chunk
        return bool(chunk)

    def _read_head(self, deadline: float) -> Optional[int]:
        """Buffer until the blank line; return its offset, or None if the peer left."""
        while True:
            end = self._pending.find(HEADER_END)
            if end != -1 or len(self._pending) > self.max_header_bytes:
                break
            if not self._fill(deadline):
                return None

        if end == -1 or end > self.max_header_bytes:
            raise RequestTooLarge(
                "Request header fields too large",
                HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE,
            )
        return end

    def _fill(self, deadline: float) -> bool:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise socket.timeout("read deadline exceeded")
        self.socket.settimeout(remaining)
        chunk = self._recv()
        self._pending += chunk
        return bool(chunk)

    def _recv(self) -> bytes:
        try:
            return self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError):
            return b""

    # ─────────────────────────────────────────────────────────────────────
    # writing
    # ─────────────────────────────────────────────────────────────────────

    def send(self, data: bytes) -> bool:
        """
        Send `data` completely, within write_timeout.

        Returns False if the client went away or the send timed out.
        """
        self.state = ConnectionState.WRITING
        self.socket.settimeout(self.write_timeout)
        try:
            self.socket.sendall(data)
        except socket.timeout:
            logger.warning(f"[{self.id}] Client too slow, write timed out")
            return False
        except OSError as e:
            logger.debug(f"[{self.id}] Client gone during send: {e}")
            return False
        return True

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    # ─────────────────────────────────────────────────────────────────────
    # closing
    # ─────────────────────────────────────────────────────────────────────

    def close(self):
        """
        Half-close, drain whatever the client is still sending, then release
        the descriptor. Calling it again does nothing.
        """
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSING

        with suppress(OSError):
            self.socket.shutdown(socket.SHUT_WR)
        with suppress(OSError):
            self._drain()
        with suppress(OSError):
            self.socket.close()

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Closed after {self.requests_handled} request(s)")

    def _drain(self):
        """Discard unread client bytes for at most DRAIN_SECONDS / DRAIN_BYTES."""
        deadline = time.monotonic() + DRAIN_SECONDS
        drained = 0
        while drained < DRAIN_BYTES:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            self.socket.settimeout(remaining)
            chunk = self.socket.recv(4096)
            if not chunk:
                return
            drained += len(chunk)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
