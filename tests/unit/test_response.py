"""
Unit tests for the response model and its serialization.
"""

from datetime import datetime, timedelta, timezone

import pytest

from gws.http.response import (
    HTTPResponse,
    ResponseBuilder,
    HTTPStatus,
    ok,
    error,
    not_found,
    forbidden,
    internal_error,
    method_not_allowed,
    redirect,
    format_http_date,
)


def split_response(raw: bytes):
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    headers = dict(line.split(": ", 1) for line in lines[1:])
    return lines[0], headers, body


class TestHTTPResponse:
    """Tests for HTTPResponse."""

    def test_status_line(self):
        assert HTTPResponse(status=HTTPStatus.OK).status_line == "HTTP/1.1 200 OK"
        assert HTTPResponse(status=HTTPStatus.NOT_FOUND).status_line == "HTTP/1.1 404 Not Found"

    def test_fixed_body_gets_content_length(self):
        response = HTTPResponse(headers={"X-Custom": "value"}, body=b"hello world")

        status_line, headers, body = split_response(response.to_bytes())

        assert status_line == "HTTP/1.1 200 OK"
        assert headers["X-Custom"] == "value"
        assert headers["Content-Length"] == "11"
        assert headers["Server"] == "GWS/1.0"
        assert headers["Date"].endswith(" GMT")
        assert body == b"hello world"

    def test_streamed_body_is_chunked(self):
        """An iterable body is framed with chunked transfer coding, in order."""
        response = HTTPResponse(body=iter([b"hello ", b"", b"world"]))

        _, headers, body = split_response(response.to_bytes())

        assert headers["Transfer-Encoding"] == "chunked"
        assert "Content-Length" not in headers
        assert body == b"6\r\nhello \r\n5\r\nworld\r\n0\r\n\r\n"

    def test_streamed_body_on_http10_closes(self):
        response = HTTPResponse(body=iter([b"abc"]), version="HTTP/1.0")

        _, headers, body = split_response(response.to_bytes())

        assert headers["Connection"] == "close"
        assert "Transfer-Encoding" not in headers
        assert body == b"abc"

    def test_header_block_precedes_body(self):
        """Headers added before serialization land in the header block."""
        def chunks():
            yield b"<html>"
            yield b"</html>"

        response = HTTPResponse(body=chunks())
        response.headers["Cache-Control"] = "public, max-age=60"

        parts = list(response.serialize())

        assert b"Cache-Control: public, max-age=60" in parts[0]
        assert parts[0].endswith(b"\r\n\r\n")
        assert b"<html>" not in parts[0]

    def test_head_omits_body(self):
        def chunks():
            yield b"never sent"

        response = HTTPResponse(body=chunks())
        parts = list(response.serialize(include_body=False))

        assert len(parts) == 1
        assert b"never sent" not in parts[0]

    def test_no_content_has_no_framing(self):
        response = HTTPResponse(status=HTTPStatus.NOT_MODIFIED, headers={"ETag": '"1-2"'}, body=b"x")

        _, headers, body = split_response(response.to_bytes())

        assert "Content-Length" not in headers
        assert body == b""

    def test_read_materializes_stream(self):
        response = HTTPResponse(body=iter([b"a", b"b"]))

        assert response.read() == b"ab"
        assert response.read() == b"ab"
        assert response.is_streaming is False

    def test_set_header_chaining(self):
        response = HTTPResponse().set_header("X-One", "1").set_header("X-Two", "2")

        assert response.headers == {"X-One": "1", "X-Two": "2"}


class TestResponseBuilder:
    """Tests for ResponseBuilder."""

    def test_html_body(self):
        response = ResponseBuilder().html("<h1>Hi</h1>").build()

        assert response.headers["Content-Type"] == "text/html; charset=utf-8"
        assert response.body == b"<h1>Hi</h1>"

    def test_redirect_defaults_to_found(self):
        response = ResponseBuilder().redirect("/").build()

        assert response.status == HTTPStatus.FOUND
        assert response.headers["Location"] == "/"

    def test_stream(self):
        response = ResponseBuilder().stream(iter([b"x"])).build()

        assert response.is_streaming

    def test_method_chaining(self):
        response = (ResponseBuilder()
            .status(HTTPStatus.CREATED)
            .header("X-Id", "7")
            .text("made")
            .close_connection()
            .build())

        assert response.status == HTTPStatus.CREATED
        assert response.headers["Connection"] == "close"
        assert response.body == b"made"


class TestConvenienceFunctions:
    """Tests for the response helpers."""

    def test_ok_text(self):
        response = ok("hello")

        assert response.status == HTTPStatus.OK
        assert response.headers["Content-Type"] == "text/plain; charset=utf-8"

    def test_error_is_plain_text_with_newline(self):
        response = error(HTTPStatus.NOT_FOUND, "Page Not Found")

        assert response.status == 404
        assert response.body == b"Page Not Found\n"
        assert response.headers["Content-Type"] == "text/plain; charset=utf-8"
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    def test_error_defaults_to_phrase(self):
        assert error(HTTPStatus.SERVICE_UNAVAILABLE).body == b"Service Unavailable\n"

    def test_not_found_default_message(self):
        assert not_found().body == b"404 page not found\n"

    def test_forbidden_and_internal_error(self):
        assert forbidden("Forbidden - CSRF token missing").status == 403
        assert internal_error().status == 500

    def test_method_not_allowed_sets_allow(self):
        response = method_not_allowed(["POST"])

        assert response.status == 405
        assert response.headers["Allow"] == "POST"

    def test_redirect_see_other(self):
        response = redirect("/account", HTTPStatus.SEE_OTHER)

        assert response.status == 303
        assert response.headers["Location"] == "/account"


class TestHTTPStatus:
    """Tests for HTTPStatus."""

    def test_status_phrases(self):
        assert HTTPStatus.OK.phrase == "OK"
        assert HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE.phrase == "Request Header Fields Too Large"

    @pytest.mark.parametrize("status,allowed", [
        (HTTPStatus.OK, True),
        (HTTPStatus.NOT_FOUND, True),
        (HTTPStatus.NO_CONTENT, False),
        (HTTPStatus.NOT_MODIFIED, False),
        (HTTPStatus.CONTINUE, False),
    ])
    def test_allows_body(self, status, allowed):
        assert status.allows_body is allowed

    def test_categories(self):
        assert HTTPStatus.FOUND.is_redirect
        assert HTTPStatus.FORBIDDEN.is_error
        assert not HTTPStatus.OK.is_error


class TestFormatHTTPDate:
    """Tests for format_http_date."""

    def test_format(self):
        dt = datetime(2026, 1, 15, 12, 30, 45, tzinfo=timezone.utc)

        assert format_http_date(dt) == "Thu, 15 Jan 2026 12:30:45 GMT"

    def test_converts_to_utc(self):
        """A local time is converted, not just relabelled."""
        nairobi = timezone(timedelta(hours=3))
        dt = datetime(2026, 1, 15, 15, 30, 45, tzinfo=nairobi)

        assert format_http_date(dt) == "Thu, 15 Jan 2026 12:30:45 GMT"
