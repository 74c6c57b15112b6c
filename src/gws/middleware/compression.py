"""
=============================================================================
COMPRESSION MIDDLEWARE
=============================================================================

gzip-encodes response bodies for clients that accept it.

=============================================================================
CONTENT NEGOTIATION
=============================================================================

    Request:   Accept-Encoding: gzip, deflate, br
    Response:  Content-Encoding: gzip
               Vary: Accept-Encoding      (caches key on the request header)

A client that does not list gzip gets the handler's response object back
untouched: same headers, same body, byte for byte.

=============================================================================
STREAMING, NOT BUFFERING
=============================================================================

Instead of compressing a finished body, the middleware substitutes the
body with a generator that drives a zlib compressor over the handler's
chunks as the server writes them:

    handler chunks  ──►  compressobj.compress()  ──►  socket
    "<html>…"            (gzip container, wbits=31)   in the same order
    "…</html>"
                         compressobj.flush()  ──►  gzip trailer (CRC + size)

GzipStream finishes the gzip member on a normal end and
closes the wrapped body on every exit path, including a client that goes
away mid-response or an exception raised while rendering.

Responses that may not carry a body (1xx, 204, 304) are never encoded:
there is nothing to compress and a gzip header would be a protocol error.

=============================================================================
"""

import zlib
from typing import Iterable, Iterator

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse
from ..http.status_codes import HTTPStatus


# wbits 16 + MAX_WBITS selects the gzip container instead of raw zlib
GZIP_WBITS = 16 + zlib.MAX_WBITS


def accepts_gzip(request: HTTPRequest) -> bool:
    """True if Accept-Encoding lists gzip (without an explicit q=0)."""
    for coding in request.headers.get("accept-encoding", "").split(","):
        name, _, params = coding.strip().partition(";")
        if name.strip().lower() not in ("gzip", "x-gzip"):
            continue
        q = params.strip().lower()
        if q.startswith("q="):
            try:
                return float(q[2:]) > 0
            except ValueError:
                return False
        return True
    return False


class GzipStream:
    """
    Compress `chunks` lazily into one gzip member, preserving order.

    The source iterable is closed exactly once: when the stream ends or
    fails, or when close() is called, even if iteration never started
    (HEAD responses, a send that fails on the header block).
    """

    def __init__(self, chunks: Iterable[bytes], level: int = 6):
        self._source = chunks
        self._source_closed = False
        self._frames = self._compress(level)

    def _compress(self, level: int) -> Iterator[bytes]:
        compressor = zlib.compressobj(level, zlib.DEFLATED, GZIP_WBITS)
        try:
            for chunk in self._source:
                data = compressor.compress(chunk)
                if data:
                    yield data
            yield compressor.flush()
        finally:
            self._close_source()

    def _close_source(self):
        if self._source_closed:
            return
        self._source_closed = True
        close = getattr(self._source, "close", None)
        if close is not None:
            close()

    def __iter__(self) -> "GzipStream":
        return self

    def __next__(self) -> bytes:
        return next(self._frames)

    def close(self):
        self._frames.close()
        self._close_source()


def gzip_stream(chunks: Iterable[bytes], level: int = 6) -> GzipStream:
    return GzipStream(chunks, level)


class CompressionMiddleware(Middleware):
    """
    gzip Content-Encoding for clients that ask for it.

        chain(about, CompressionMiddleware())
        chain(files, CompressionMiddleware(level=9), CacheMiddleware())
    """

    def __init__(self, level: int = 6):
        if not 1 <= level <= 9:
            raise ValueError(f"gzip level must be 1-9, got {level}")
        self.level = level

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        if not accepts_gzip(request):
            return next(request)

        response = next(request)

        if "Content-Encoding" in response.headers:
            return response  # already encoded upstream
        if not HTTPStatus(response.status).allows_body:
            return response

        body = [response.body] if not response.is_streaming else response.body
        response.body = gzip_stream(body, self.level)
        response.headers.pop("Content-Length", None)
        response.headers["Content-Encoding"] = "gzip"

        vary = response.headers.get("Vary", "")
        if "accept-encoding" not in vary.lower():
            response.headers["Vary"] = f"{vary}, Accept-Encoding".lstrip(", ")

        return response
