"""
=============================================================================
HTTP RESPONSE MODEL
=============================================================================

Builds HTTP/1.1 responses (RFC 9112 framing).

A handler returns an HTTPResponse. Its headers stay mutable while the
response travels back up the middleware chain; nothing reaches the socket
until the server serializes it. That is what lets cache, security and
cookie headers be added by outer layers and still land *before* the body.

=============================================================================
FIXED vs STREAMED BODIES
=============================================================================

`body` is either bytes or an iterable of byte chunks:

    HTTPResponse(body=b"<html>...")          fixed    → Content-Length: N
    HTTPResponse(body=template.generate())   streamed → Transfer-Encoding: chunked
                                                        (Connection: close on HTTP/1.0)

A streamed body is consumed exactly once, in order, while the server
writes it. Middleware that transforms the bytes (gzip) substitutes the
iterable with a wrapping generator instead of buffering the payload.

    HTTP/1.1 200 OK\r\n
    Content-Type: text/html; charset=utf-8\r\n
    Transfer-Encoding: chunked\r\n
    \r\n
    1f4\r\n <500 bytes>\r\n
    0\r\n\r\n                    ← last-chunk terminates the body

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Optional, Dict, Iterable, Iterator, Union

from .status_codes import HTTPStatus


Body = Union[bytes, Iterable[bytes]]

DEFAULT_SERVER_NAME = "GWS/1.0"


@dataclass
class HTTPResponse:
    """
    An HTTP response on its way to the client.

    Use ResponseBuilder or the helper functions below to construct one.
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: Body = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        return f"{self.version} {int(self.status)} {HTTPStatus(self.status).phrase}"

    @property
    def is_streaming(self) -> bool:
        return not isinstance(self.body, (bytes, bytearray))

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        self.headers[name] = value
        return self

    def read(self) -> bytes:
        """
        Materialize the body as bytes.

        Consumes a streamed body and keeps the result, so it may be called
        more than once. Meant for tests and tooling; the server streams.
        """
        if self.is_streaming:
            try:
                self.body = b"".join(self.body)
            finally:
                self.close()
        return bytes(self.body)

    def close(self) -> None:
        """Release a streamed body that will not be (fully) consumed."""
        close = getattr(self.body, "close", None)
        if close is not None:
            close()

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def serialize(
        self,
        server_name: str = DEFAULT_SERVER_NAME,
        include_body: bool = True,
    ) -> Iterator[bytes]:
        """
        Yield the response as wire bytes: the header block first, then the
        body (chunk-framed when streamed over HTTP/1.1).

        `include_body=False` is used for HEAD requests: the header block is
        identical to the GET response, the body is never produced.
        """
        headers = dict(self.headers)
        allows_body = HTTPStatus(self.status).allows_body
        chunked = False

        if not allows_body:
            headers.pop("Content-Length", None)
            headers.pop("Transfer-Encoding", None)
        elif self.is_streaming:
            headers.pop("Content-Length", None)
            if self.version == "HTTP/1.1":
                headers["Transfer-Encoding"] = "chunked"
                chunked = True
            else:
                # HTTP/1.0 has no chunked coding: the end of the body is the close
                headers["Connection"] = "close"
        else:
            headers.setdefault("Content-Length", str(len(self.body)))

        headers.setdefault("Date", format_http_date(datetime.now(timezone.utc)))
        headers.setdefault("Server", server_name)

        lines = [self.status_line]
        lines.extend(f"{name}: {value}" for name, value in headers.items())

        # the body is released however this generator ends, including a
        # consumer that stops after the header block
        try:
            yield ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")

            if not include_body or not allows_body:
                return

            if not self.is_streaming:
                if self.body:
                    yield bytes(self.body)
                return

            for chunk in self.body:
                if not chunk:
                    continue
                if chunked:
                    yield b"%x\r\n" % len(chunk) + chunk + b"\r\n"
                else:
                    yield chunk
            if chunked:
                yield b"0\r\n\r\n"
        finally:
            self.close()

    def to_bytes(self, server_name: str = DEFAULT_SERVER_NAME) -> bytes:
        """Serialize the whole response into one bytes object."""
        return b"".join(self.serialize(server_name))


class ResponseBuilder:
    """
    Fluent builder for HTTPResponse.

        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .html("<h1>Welcome</h1>")
            .header("X-Frame-Options", "SAMEORIGIN")
            .build())
    """

    def __init__(self):
        self._status = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body: Body = b""

    def status(self, status: HTTPStatus) -> "ResponseBuilder":
        self._status = status
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def headers(self, headers: Dict[str, str]) -> "ResponseBuilder":
        self._headers.update(headers)
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        return self.header("Content-Type", content_type)

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def stream(self, chunks: Iterable[bytes]) -> "ResponseBuilder":
        """Use an iterable of byte chunks as the body (sent chunked)."""
        self._body = chunks
        return self

    def text(self, text: str, content_type: str = "text/plain; charset=utf-8") -> "ResponseBuilder":
        self._body = text.encode("utf-8")
        self._headers["Content-Type"] = content_type
        return self

    def html(self, html: str) -> "ResponseBuilder":
        self._body = html.encode("utf-8")
        self._headers["Content-Type"] = "text/html; charset=utf-8"
        return self

    def redirect(self, location: str, status: HTTPStatus = HTTPStatus.FOUND) -> "ResponseBuilder":
        """
        Redirect to `location`.

        302 Found is the default. 303 See Other is the right answer to a
        POST (the browser follows with a GET).
        """
        self._status = status
        self._headers["Location"] = location
        return self

    def close_connection(self) -> "ResponseBuilder":
        self._headers["Connection"] = "close"
        return self

    def build(self) -> HTTPResponse:
        return HTTPResponse(
            status=self._status,
            headers=self._headers,
            body=self._body,
        )


def format_http_date(dt: datetime) -> str:
    """
    Format an aware datetime as an IMF-fixdate (RFC 9110 §5.6.7).

        Thu, 15 Jan 2026 12:30:45 GMT

    The value is converted to UTC first, so the "GMT" label is always true.
    """
    return format_datetime(dt.astimezone(timezone.utc), usegmt=True)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def ok(body: Union[str, bytes] = b"", content_type: Optional[str] = None) -> HTTPResponse:
    builder = ResponseBuilder().status(HTTPStatus.OK)
    if isinstance(body, str):
        builder.text(body, content_type or "text/plain; charset=utf-8")
    else:
        builder.body(body)
        if content_type:
            builder.content_type(content_type)
    return builder.build()


def redirect(location: str, status: HTTPStatus = HTTPStatus.FOUND) -> HTTPResponse:
    return ResponseBuilder().redirect(location, status).build()


def error(status: HTTPStatus, message: Optional[str] = None) -> HTTPResponse:
    """
    Plain-text error response: the message plus a newline, never sniffed.

        error(HTTPStatus.NOT_FOUND, "Page Not Found")
        → 404, body b"Page Not Found\\n"
    """
    message = message if message is not None else HTTPStatus(status).phrase
    return (ResponseBuilder()
        .status(status)
        .text(message + "\n")
        .header("X-Content-Type-Options", "nosniff")
        .build())


def unauthorized(message: str = "Unauthorized") -> HTTPResponse:
    return error(HTTPStatus.UNAUTHORIZED, message)


def forbidden(message: str = "Forbidden") -> HTTPResponse:
    return error(HTTPStatus.FORBIDDEN, message)


def not_found(message: str = "404 page not found") -> HTTPResponse:
    return error(HTTPStatus.NOT_FOUND, message)


def method_not_allowed(allowed_methods: list[str]) -> HTTPResponse:
    response = error(HTTPStatus.METHOD_NOT_ALLOWED, "Method Not Allowed")
    response.headers["Allow"] = ", ".join(allowed_methods)
    return response


def internal_error(message: str = "Internal Server Error") -> HTTPResponse:
    return error(HTTPStatus.INTERNAL_SERVER_ERROR, message)
