"""
=============================================================================
ACCESS LOG MIDDLEWARE
=============================================================================

One log line per request on the "gws.access" logger, with timing and a
correlation id.

=============================================================================
LOG FORMATS
=============================================================================

    TEXT (default, Apache-like):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 192.168.1.1 - - [10/Jun/2026:10:55:36 +0000] "GET /about" 200 - 5ms │
    │ ───────────────────────────────────────────────────────────────────│
    │ IP          Timestamp              Method/Path   Status Size Time   │
    └─────────────────────────────────────────────────────────────────────┘

    JSON (one object per line, for log shippers):
    {"request_id": "a1b2c3d4", "method": "GET", "path": "/about", ...}

Size is "-" for streamed bodies (rendered pages, gzip): their length is
not known until the last byte has been written, long after this
middleware returns.

The client address comes from client_ip(), so X-Forwarded-For is honoured
behind a proxy. Session cookies and form fields are never logged.

=============================================================================
"""

import json
import time
import secrets
import logging
from dataclasses import dataclass, asdict
from typing import Callable, Iterable, Optional

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest, client_ip
from ..http.response import HTTPResponse


# Configure separately from application logs:
#   logging.getLogger("gws.access").addHandler(file_handler)
logger = logging.getLogger("gws.access")

REQUEST_ID_KEY = "gws.request_id"


@dataclass
class AccessRecord:
    """What gets written for one request. Never carries cookies or form data."""

    request_id: str
    method: str
    path: str
    query: str
    client_ip: str
    user_agent: str
    status_code: int
    content_length: Optional[int]
    duration_ms: float
    timestamp: str

    def as_json(self) -> str:
        fields = asdict(self)
        fields["duration_ms"] = round(self.duration_ms, 2)
        return json.dumps(fields)

    def as_text(self) -> str:
        size = self.content_length if self.content_length is not None else "-"
        request_line = f'"{self.method} {self.path}"'
        return (
            f"{self.client_ip} - - [{self.timestamp}] {request_line} "
            f"{self.status_code} {size} {self.duration_ms:.2f}ms"
        )


_FORMATTERS: dict[str, Callable[[AccessRecord], str]] = {
    "text": AccessRecord.as_text,
    "json": AccessRecord.as_json,
}


def _flatten_query(params: dict[str, list[str]]) -> str:
    return "&".join(f"{key}={value}" for key, values in params.items() for value in values)


class LoggingMiddleware(Middleware):
    """
    Access log middleware. Register it first so it also sees requests that
    CSRF or routing turn away:

        server.use(LoggingMiddleware())
        server.use(LoggingMiddleware(log_format="json", skip_paths=["/favicon.ico"]))

    Every response gets an X-Request-ID header, and the same id is stored in
    request.context[REQUEST_ID_KEY] for handlers that log on their own.
    """

    def __init__(
        self,
        log_format: str = "text",
        level: int = logging.INFO,
        skip_paths: Optional[Iterable[str]] = None,
        request_id_header: Optional[str] = "X-Request-ID",
    ):
        try:
            self._format = _FORMATTERS[log_format]
        except KeyError:
            raise ValueError(f"Unknown access log format: {log_format!r}") from None
        self.log_format = log_format
        self.level = level
        self.skip_paths = frozenset(skip_paths or ())
        self.request_id_header = request_id_header

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        request_id = secrets.token_hex(4)
        request.context[REQUEST_ID_KEY] = request_id
        started = time.perf_counter()

        try:
            response = next(request)
        except Exception as exc:
            logger.error(
                f"Request failed: {request.method} {request.raw_path} "
                f"- {type(exc).__name__}: {exc} ({self._elapsed_ms(started):.2f}ms)"
            )
            raise

        if self.request_id_header:
            response.headers[self.request_id_header] = request_id

        if request.raw_path not in self.skip_paths:
            record = self._record(request, response, request_id, self._elapsed_ms(started))
            logger.log(self.level, self._format(record))
        return response

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return (time.perf_counter() - started) * 1000

    @staticmethod
    def _record(request: HTTPRequest, response: HTTPResponse,
                request_id: str, duration_ms: float) -> AccessRecord:
        return AccessRecord(
            request_id=request_id,
            method=request.method,
            path=request.raw_path,
            query=_flatten_query(request.query_params),
            client_ip=client_ip(request),
            user_agent=request.user_agent or "-",
            status_code=int(response.status),
            # streamed bodies have no length until the last chunk is written
            content_length=None if response.is_streaming else len(response.body),
            duration_ms=duration_ms,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )
