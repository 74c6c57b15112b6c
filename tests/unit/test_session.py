"""
Unit tests for encrypted cookie sessions.
"""

import pytest
from cryptography.fernet import Fernet

from conftest import make_request, cookie_from
from gws.http import HTTPResponse
from gws.session import (
    MAX_COOKIE_SIZE,
    SESSION_MAX_AGE,
    Session,
    SessionError,
    SessionStore,
    generate_key,
)


def tamper(cookie: str) -> str:
    """Change one character in the middle of the cookie value."""
    name, _, value = cookie.partition("=")
    middle = len(value) // 2
    replacement = "A" if value[middle] != "A" else "B"
    return f"{name}={value[:middle]}{replacement}{value[middle + 1:]}"


def logged_in_cookie(store: SessionStore, username: str = "alice") -> str:
    response = HTTPResponse()
    store.login(response, make_request(), username)
    return cookie_from(response)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestSession:
    """Tests for the Session value object."""

    def test_anonymous_by_default(self):
        session = Session()

        assert session.username is None
        assert session.is_authenticated is False
        assert session.values == {}
        assert len(session.id) == 32

    def test_non_string_username_is_not_authenticated(self):
        assert Session(values={"username": 42}).is_authenticated is False

    def test_payload_round_trip_keeps_csrf(self):
        session = Session(values={"username": "alice"}, csrf_token="tok")

        restored = Session.from_payload(session.to_payload())

        assert restored == session

    @pytest.mark.parametrize("payload", [
        [],
        {"values": {}},
        {"id": "", "values": {}},
        {"id": "abc", "values": []},
        {"id": "abc", "values": {}, "csrf": 7},
    ])
    def test_malformed_payload_rejected(self, payload):
        with pytest.raises(ValueError):
            Session.from_payload(payload)


class TestSessionStore:
    """Tests for SessionStore."""

    def test_requires_a_valid_key(self):
        with pytest.raises(ValueError):
            SessionStore([])
        with pytest.raises(ValueError):
            SessionStore(["not-a-fernet-key"])

    def test_no_cookie_is_anonymous(self, sessions: SessionStore):
        request = make_request()

        assert sessions.logged_in(request) is False
        assert sessions.logged_in_user(request) == ""

    def test_login_round_trip(self, sessions: SessionStore):
        cookie = logged_in_cookie(sessions)
        request = make_request(cookie=cookie)

        assert sessions.logged_in(request) is True
        assert sessions.logged_in_user(request) == "alice"

    def test_cookie_attributes(self, sessions: SessionStore):
        response = HTTPResponse()
        sessions.login(response, make_request(), "alice")

        header = response.headers["Set-Cookie"]
        attributes = header.split("; ")

        assert attributes[0].startswith("gws_session=")
        assert "Path=/" in attributes
        assert f"Max-Age={SESSION_MAX_AGE}" in attributes
        assert "HttpOnly" in attributes
        assert "Secure" in attributes
        assert any(a.startswith("Expires=") and a.endswith(" GMT") for a in attributes)

    def test_insecure_cookie_option(self, session_keys):
        store = SessionStore(session_keys, secure=False, same_site="Lax")
        response = HTTPResponse()
        store.login(response, make_request(), "alice")

        header = response.headers["Set-Cookie"]

        assert "Secure" not in header.split("; ")
        assert header.endswith("SameSite=Lax")

    def test_login_rotates_session_id(self, sessions: SessionStore):
        request = make_request()
        before = sessions.get(request).id

        sessions.login(HTTPResponse(), request, "alice")

        assert sessions.get(request).id != before

    def test_logout_clears_values(self, sessions: SessionStore):
        request = make_request(cookie=logged_in_cookie(sessions))
        sessions.get(request).values["theme"] = "dark"
        response = HTTPResponse()

        sessions.logout(response, request)

        after = make_request(cookie=cookie_from(response))
        assert sessions.logged_in(after) is False
        assert sessions.get(after).values == {}

    def test_logout_keeps_csrf_token(self, sessions: SessionStore):
        request = make_request(cookie=logged_in_cookie(sessions))
        sessions.get(request).csrf_token = "raw-token"
        response = HTTPResponse()

        sessions.logout(response, request)

        assert sessions.get(make_request(cookie=cookie_from(response))).csrf_token == "raw-token"

    def test_tampered_cookie_is_anonymous(self, sessions: SessionStore):
        request = make_request(cookie=tamper(logged_in_cookie(sessions)))

        assert sessions.logged_in(request) is False

    def test_garbage_cookie_is_anonymous(self, sessions: SessionStore):
        request = make_request(cookie="gws_session=%%%not-base64%%%")

        assert sessions.get(request).is_authenticated is False

    def test_login_over_corrupt_cookie_fails(self, sessions: SessionStore):
        request = make_request(cookie=tamper(logged_in_cookie(sessions)))
        response = HTTPResponse()

        with pytest.raises(SessionError):
            sessions.login(response, request, "mallory")

        assert "Set-Cookie" not in response.headers

    def test_session_is_cached_per_request(self, sessions: SessionStore):
        request = make_request(cookie=logged_in_cookie(sessions))

        assert sessions.get(request) is sessions.get(request)

    def test_cookie_from_other_key_is_anonymous(self, sessions: SessionStore):
        cookie = logged_in_cookie(sessions)
        stranger = SessionStore([generate_key()])

        assert stranger.logged_in(make_request(cookie=cookie)) is False

    def test_key_rotation(self, session_keys):
        """Cookies issued under a retired key still decode while it is listed."""
        old = SessionStore(session_keys)
        cookie = logged_in_cookie(old)
        rotated = SessionStore([generate_key()] + session_keys)

        assert rotated.logged_in_user(make_request(cookie=cookie)) == "alice"

    def test_expired_cookie_is_anonymous(self, session_keys):
        clock = FakeClock()
        store = SessionStore(session_keys, clock=clock)
        cookie = logged_in_cookie(store)

        clock.now += SESSION_MAX_AGE - 1
        assert store.logged_in(make_request(cookie=cookie)) is True

        clock.now += 2
        assert store.logged_in(make_request(cookie=cookie)) is False

    def test_is_logged_in_slides_expiry(self, session_keys):
        clock = FakeClock()
        store = SessionStore(session_keys, clock=clock)
        cookie = logged_in_cookie(store)

        clock.now += SESSION_MAX_AGE - 60
        response = HTTPResponse()
        assert store.is_logged_in(response, make_request(cookie=cookie)) is True
        refreshed = cookie_from(response)

        clock.now += SESSION_MAX_AGE - 60
        assert store.logged_in(make_request(cookie=cookie)) is False
        assert store.logged_in(make_request(cookie=refreshed)) is True

    def test_is_logged_in_anonymous_sets_no_cookie(self, sessions: SessionStore):
        response = HTTPResponse()

        assert sessions.is_logged_in(response, make_request()) is False
        assert "Set-Cookie" not in response.headers

    def test_oversized_session_rejected(self, sessions: SessionStore):
        request = make_request()
        sessions.get(request).values["blob"] = "x" * MAX_COOKIE_SIZE
        response = HTTPResponse()

        with pytest.raises(SessionError):
            sessions.save(response, request)

        assert "Set-Cookie" not in response.headers

    def test_unserializable_session_rejected(self, sessions: SessionStore):
        request = make_request()
        sessions.get(request).values["obj"] = object()

        with pytest.raises(SessionError):
            sessions.save(HTTPResponse(), request)


def test_generate_key_is_a_fernet_key():
    Fernet(generate_key())
