"""
Unit tests for the authentication gate.
"""

from conftest import make_request, cookie_from
from gws.http import HTTPResponse, ok
from gws.middleware import AuthGate, chain


def test_anonymous_is_redirected(sessions):
    calls = []

    def account(request):
        calls.append(request)
        return ok("secret")

    response = chain(account, AuthGate(sessions))(make_request(path="/account"))

    assert response.status == 302
    assert response.headers["Location"] == "/"
    assert "Set-Cookie" not in response.headers
    assert calls == []


def test_logged_in_reaches_handler(sessions):
    login = HTTPResponse()
    sessions.login(login, make_request(), "alice")

    handler = chain(lambda request: ok("secret"), AuthGate(sessions))
    response = handler(make_request(path="/account", cookie=cookie_from(login)))

    assert response.status == 200
    assert response.body == b"secret"


def test_custom_redirect_target(sessions):
    response = chain(lambda request: ok(), AuthGate(sessions, redirect_to="/login"))(make_request())

    assert response.headers["Location"] == "/login"
