"""
=============================================================================
STATIC FILE HANDLER
=============================================================================

Serves files from a directory on disk (stylesheets, scripts, images and
the favicon).

    router.handle("/static/", chain(strip_prefix("/static", static), ...))

            GET /static/css/site.css
    strip   GET /css/site.css
    serve   <root_dir>/css/site.css

=============================================================================
PATH TRAVERSAL
=============================================================================

    GET /static/..%2f..%2fetc/passwd

The request path is joined to root_dir and resolved (following ".." and
symlinks). A result outside root_dir is refused with 403 Forbidden:

    full_path = (root_dir / user_input).resolve()
    full_path.relative_to(root_dir)   # raises ValueError if outside

=============================================================================
CONDITIONAL REQUESTS
=============================================================================

    ETag: "1718445600-5120"          mtime-size fingerprint
    If-None-Match: "1718445600-5120"  → 304 Not Modified, no body

Freshness (Cache-Control, Expires) is not decided here: that is the cache
middleware's job, chosen per route.

=============================================================================
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Union

from ..http.request import HTTPRequest
from ..http.response import (
    HTTPResponse, ResponseBuilder, HTTPStatus, format_http_date,
    not_found, forbidden, internal_error, method_not_allowed,
)
from ..http.mime_types import get_content_type
from ..http.router import Handler


logger = logging.getLogger(__name__)


READ_METHODS = ("GET", "HEAD")


class StaticFileHandler:
    """
    Serves the files under `root_dir`.

        static = StaticFileHandler("static")
        router.handle("/static/", strip_prefix("/static", static))
        router.handle("/favicon.ico", static.file("favicon.ico"))

    A missing root directory is not fatal: it is logged once and every
    request is answered 404, the same as an empty directory.
    """

    def __init__(self, root_dir: Union[str, Path], index_file: str = "index.html"):
        self.root_dir = Path(root_dir).resolve()
        self.index_file = index_file

        if not self.root_dir.is_dir():
            logger.warning(f"Static root directory does not exist: {self.root_dir}")

    def __call__(self, request: HTTPRequest) -> HTTPResponse:
        return self.handle(request)

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """Serve the file named by `request.path`, relative to root_dir."""
        return self._serve_relative(request.path.lstrip("/"), request)

    def file(self, name: str) -> Handler:
        """A handler that always serves the one file `name` under root_dir."""
        def serve_file(request: HTTPRequest) -> HTTPResponse:
            return self._serve_relative(name.lstrip("/"), request)

        serve_file.__name__ = f"static_file({name})"
        return serve_file

    def _serve_relative(self, file_path: str, request: HTTPRequest) -> HTTPResponse:
        if request.method not in READ_METHODS:
            return method_not_allowed(list(READ_METHODS))

        full_path = (self.root_dir / file_path).resolve()

        try:
            full_path.relative_to(self.root_dir)
        except ValueError:
            logger.warning(f"Path traversal attempt: {file_path!r}")
            return forbidden("Access denied")

        if full_path.is_dir():
            index_path = full_path / self.index_file
            if not index_path.is_file():
                return forbidden("Directory listing not allowed")
            full_path = index_path

        if not full_path.is_file():
            return not_found()

        return self._serve_file(full_path, request)

    def _serve_file(self, path: Path, request: HTTPRequest) -> HTTPResponse:
        try:
            stat = path.stat()
            etag = f'"{int(stat.st_mtime)}-{stat.st_size}"'

            if request.headers.get("if-none-match", "") == etag:
                return (ResponseBuilder()
                    .status(HTTPStatus.NOT_MODIFIED)
                    .header("ETag", etag)
                    .build())

            content = path.read_bytes()
        except PermissionError:
            return forbidden("Permission denied")
        except OSError as e:
            logger.error(f"Error serving file {path}: {e}")
            return internal_error()

        mtime = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        return (ResponseBuilder()
            .status(HTTPStatus.OK)
            .header("Content-Type", get_content_type(str(path)))
            .header("ETag", etag)
            .header("Last-Modified", format_http_date(mtime))
            .body(content)
            .build())
