"""
Unit tests for gzip response compression.
"""

import gzip

import pytest

from conftest import make_request
from gws.http import HTTPResponse, HTTPStatus, ok
from gws.middleware import CompressionMiddleware, accepts_gzip, chain
from gws.middleware.compression import gzip_stream


GZIP = {"Accept-Encoding": "gzip, deflate"}


def respond_with(response: HTTPResponse):
    return lambda request: response


class TestAcceptsGzip:
    """Tests for Accept-Encoding negotiation."""

    @pytest.mark.parametrize("header,expected", [
        ("gzip", True),
        ("deflate, GZIP", True),
        ("br;q=1.0, gzip;q=0.5", True),
        ("x-gzip", True),
        ("gzip;q=0", False),
        ("deflate, br", False),
        ("", False),
    ])
    def test_negotiation(self, header, expected):
        request = make_request(headers={"Accept-Encoding": header} if header else None)

        assert accepts_gzip(request) is expected


class TestCompressionMiddleware:
    """Tests for CompressionMiddleware."""

    def test_passthrough_without_gzip(self):
        """The handler's response comes back as the very same object."""
        original = ok("plain body")
        headers_before = dict(original.headers)

        response = chain(respond_with(original), CompressionMiddleware())(make_request())

        assert response is original
        assert response.headers == headers_before
        assert response.body == b"plain body"

    def test_fixed_body_round_trip(self):
        response = chain(respond_with(ok("hello " * 100)), CompressionMiddleware())(
            make_request(headers=GZIP)
        )

        assert response.headers["Content-Encoding"] == "gzip"
        assert "Content-Length" not in response.headers
        assert gzip.decompress(response.read()) == b"hello " * 100

    def test_stream_keeps_order(self):
        chunks = [f"<p>{i}</p>".encode() for i in range(50)]
        original = HTTPResponse(body=iter(chunks))

        response = chain(respond_with(original), CompressionMiddleware())(make_request(headers=GZIP))

        assert response.is_streaming
        assert gzip.decompress(response.read()) == b"".join(chunks)

    def test_vary_added_once(self):
        original = ok("x")
        original.headers["Vary"] = "Cookie"

        response = chain(respond_with(original), CompressionMiddleware())(make_request(headers=GZIP))

        assert response.headers["Vary"] == "Cookie, Accept-Encoding"

    def test_vary_without_existing_value(self):
        response = chain(respond_with(ok("x")), CompressionMiddleware())(make_request(headers=GZIP))

        assert response.headers["Vary"] == "Accept-Encoding"

    def test_not_modified_untouched(self):
        original = HTTPResponse(status=HTTPStatus.NOT_MODIFIED, headers={"ETag": '"1-2"'})

        response = chain(respond_with(original), CompressionMiddleware())(make_request(headers=GZIP))

        assert "Content-Encoding" not in response.headers
        assert response.body == b""

    def test_already_encoded_untouched(self):
        original = ok(b"\x1f\x8b already")
        original.headers["Content-Encoding"] = "br"

        response = chain(respond_with(original), CompressionMiddleware())(make_request(headers=GZIP))

        assert response.headers["Content-Encoding"] == "br"
        assert response.body == b"\x1f\x8b already"

    def test_invalid_level(self):
        with pytest.raises(ValueError):
            CompressionMiddleware(level=0)


class TestGzipStream:
    """Tests for gzip_stream()."""

    def test_closes_source_when_abandoned(self):
        closed = []

        def source():
            try:
                for i in range(1000):
                    yield b"%d" % i * 100
            finally:
                closed.append(True)

        stream = gzip_stream(source())
        next(stream)
        stream.close()

        assert closed == [True]

    def test_closes_source_on_completion(self):
        closed = []

        class Body:
            def __iter__(self):
                return iter([b"a", b"b"])

            def close(self):
                closed.append(True)

        assert gzip.decompress(b"".join(gzip_stream(Body()))) == b"ab"
        assert closed == [True]

    def test_close_calls_source_close_once(self):
        closed = []

        class Body:
            def __iter__(self):
                return iter([b"a"])

            def close(self):
                closed.append(True)

        stream = gzip_stream(Body())
        stream.close()
        stream.close()

        assert closed == [True]

    def test_head_request_closes_gzip_source(self):
        closed = []

        def page(request):
            def render():
                yield b"<html>"
                yield b"</html>"

            class Rendered:
                def __iter__(self):
                    return render()

                def close(self):
                    closed.append(True)

            return HTTPResponse(body=Rendered())

        request = make_request(method="HEAD", headers=GZIP)
        response = chain(page, CompressionMiddleware())(request)

        frames = list(response.serialize(include_body=False))

        assert response.headers["Content-Encoding"] == "gzip"
        assert b"</html>" not in b"".join(frames)
        assert closed == [True]

    def test_abandoned_after_headers_closes_gzip_source(self):
        """A send that fails on the header block still releases the body."""
        closed = []

        def render():
            try:
                yield b"<html></html>"
            finally:
                closed.append(True)

        def page(request):
            body = render()
            next(body)  # rendering already under way
            return HTTPResponse(body=body)

        response = chain(page, CompressionMiddleware())(make_request(headers=GZIP))
        frames = response.serialize()
        next(frames)
        frames.close()

        assert closed == [True]
