"""
Unit tests for the access log middleware.
"""

import json
import logging

import pytest

from conftest import make_request
from gws.http import HTTPResponse, ok
from gws.middleware import LoggingMiddleware, chain
from gws.middleware.logging import REQUEST_ID_KEY


@pytest.fixture
def access_log(caplog):
    caplog.set_level(logging.INFO, logger="gws.access")
    return caplog


class TestLoggingMiddleware:
    """Tests for LoggingMiddleware."""

    def test_text_line(self, access_log):
        request = make_request(path="/about", headers={"User-Agent": "pytest"})

        chain(lambda r: ok("hello"), LoggingMiddleware())(request)

        line = access_log.records[-1].getMessage()
        assert line.startswith("127.0.0.1 - - [")
        assert '"GET /about" 200 5 ' in line

    def test_streamed_body_size_is_dash(self, access_log):
        chain(lambda r: HTTPResponse(body=iter([b"x"])), LoggingMiddleware())(make_request())

        assert '"GET /" 200 - ' in access_log.records[-1].getMessage()

    def test_json_line(self, access_log):
        request = make_request(path="/about", headers={"X-Forwarded-For": "203.0.113.9"})

        chain(lambda r: ok(), LoggingMiddleware(log_format="json"))(request)

        entry = json.loads(access_log.records[-1].getMessage())
        assert entry["path"] == "/about"
        assert entry["client_ip"] == "203.0.113.9"
        assert entry["status_code"] == 200

    def test_request_id(self):
        request = make_request()

        response = chain(lambda r: ok(), LoggingMiddleware())(request)

        assert response.headers["X-Request-ID"] == request.context[REQUEST_ID_KEY]
        assert len(response.headers["X-Request-ID"]) == 8

    def test_skip_paths(self, access_log):
        chain(lambda r: ok(), LoggingMiddleware(skip_paths=["/favicon.ico"]))(
            make_request(path="/favicon.ico")
        )

        assert access_log.records == []

    def test_cookies_are_not_logged(self, access_log):
        request = make_request(cookie="gws_session=secret-value")

        chain(lambda r: ok(), LoggingMiddleware(log_format="json"))(request)

        assert "secret-value" not in access_log.text

    def test_exception_logged_and_raised(self, access_log):
        def broken(request):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            chain(broken, LoggingMiddleware())(make_request(path="/x"))

        assert "Request failed: GET /x - RuntimeError: boom" in access_log.text

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            LoggingMiddleware(log_format="xml")
