"""
=============================================================================
COOKIE SESSIONS
=============================================================================

Session state lives entirely in one encrypted, authenticated cookie. There
is no server-side table: losing the cookie is the same as destroying the
session, and any worker thread can serve any request.

=============================================================================
COOKIE FORMAT
=============================================================================

    Set-Cookie: gws_session=<fernet token>; Path=/; Expires=...;
                Max-Age=14400; HttpOnly; Secure

    fernet token = Fernet(key).encrypt(json payload)
                   AES-128-CBC + HMAC-SHA256, issue timestamp included

    json payload = {"id": "9f1c…",              opaque session id
                    "values": {"username": "alice"},
                    "csrf": "Qm7…"}             owned by CSRFMiddleware

The Fernet timestamp is checked against `max_age` on every read, so an
expired cookie is rejected even if a client keeps sending it. Keys are a
list: the first encrypts, all of them decrypt, which lets a deployment
rotate keys without logging everybody out.

=============================================================================
STATE MACHINE
=============================================================================

    (no cookie / bad cookie) ──get──►  anonymous  {values: {}}
                                           │
                                       login(u)         sets values["username"]
                                           ▼
                                      logged in   ──is_logged_in──► re-issued
                                           │                         (sliding
                                        logout                        expiry)
                                           ▼
                                       anonymous  {values: {}}

Any decode failure (tampered, truncated, expired, wrong key, bad JSON)
yields an anonymous session. It never yields an authenticated one.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union
import json
import logging
import secrets
import time

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from .http.request import HTTPRequest
from .http.response import HTTPResponse, format_http_date


logger = logging.getLogger(__name__)


DEFAULT_COOKIE_NAME = "gws_session"
SESSION_MAX_AGE = 4 * 60 * 60  # 4 hours
MAX_COOKIE_SIZE = 4096         # per-cookie limit browsers are required to support

USERNAME_KEY = "username"


class SessionError(Exception):
    """The session cookie could not be decoded for an update, or could not be re-issued."""


def _new_session_id() -> str:
    return secrets.token_hex(16)


@dataclass
class Session:
    """
    One browser's session state.

    `values` holds application data (at minimum "username" once logged
    in). `csrf_token` belongs to the CSRF middleware and is kept apart so
    that clearing the values on logout does not invalidate open forms.
    """

    id: str = field(default_factory=_new_session_id)
    values: Dict[str, Any] = field(default_factory=dict)
    csrf_token: Optional[str] = None

    @property
    def username(self) -> Optional[str]:
        value = self.values.get(USERNAME_KEY)
        return value if isinstance(value, str) else None

    @property
    def is_authenticated(self) -> bool:
        return self.username is not None

    def clear(self) -> None:
        self.values.clear()

    def to_payload(self) -> Dict[str, Any]:
        return {"id": self.id, "values": self.values, "csrf": self.csrf_token}

    @classmethod
    def from_payload(cls, payload: Any) -> "Session":
        """Rebuild a session from a decrypted payload; ValueError if malformed."""
        if not isinstance(payload, dict):
            raise ValueError("session payload is not an object")
        session_id = payload.get("id")
        values = payload.get("values")
        csrf = payload.get("csrf")
        if not isinstance(session_id, str) or not session_id:
            raise ValueError("session payload has no id")
        if not isinstance(values, dict):
            raise ValueError("session values are not an object")
        if csrf is not None and not isinstance(csrf, str):
            raise ValueError("session csrf token is not a string")
        return cls(id=session_id, values=values, csrf_token=csrf)


class SessionStore:
    """
    Reads and writes the session cookie.

        store = SessionStore(keys=[os.environ["GWS_SESSION_KEY"]])

        store.login(response, request, "alice")
        store.logged_in(request)          # read-only check
        store.is_logged_in(response, request)   # check + sliding refresh
        store.logout(response, request)

    The decoded session is cached in `request.context`, so every
    component handling one request sees (and mutates) the same Session
    object, and the cookie is decrypted at most once per request.
    """

    def __init__(
        self,
        keys: Sequence[Union[str, bytes]],
        cookie_name: str = DEFAULT_COOKIE_NAME,
        max_age: int = SESSION_MAX_AGE,
        path: str = "/",
        http_only: bool = True,
        secure: bool = True,
        same_site: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not keys:
            raise ValueError("At least one session key is required")
        try:
            self._fernet = MultiFernet([Fernet(key) for key in keys])
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid session key (expected a Fernet key): {e}") from e

        if max_age <= 0:
            raise ValueError("Session max_age must be positive")

        self.cookie_name = cookie_name
        self.max_age = max_age
        self.path = path
        self.http_only = http_only
        self.secure = secure
        self.same_site = same_site
        self.clock = clock
        self._context_key = f"gws.session.{cookie_name}"

    # =========================================================================
    # DECODING
    # =========================================================================

    def _load(self, request: HTTPRequest) -> Tuple[Session, Optional[Exception]]:
        """
        The one decode primitive every read goes through.

        Returns the request's session plus the decode error, if the cookie
        was present but unusable. Cached per request.
        """
        cached = request.context.get(self._context_key)
        if cached is None:
            cached = self._decode(request)
            request.context[self._context_key] = cached
        return cached

    def _decode(self, request: HTTPRequest) -> Tuple[Session, Optional[Exception]]:
        raw = request.get_cookie(self.cookie_name)
        if not raw:
            return Session(), None

        try:
            data = self._fernet.decrypt_at_time(
                raw.encode("ascii"), self.max_age, int(self.clock())
            )
            return Session.from_payload(json.loads(data)), None
        except (InvalidToken, ValueError, TypeError) as e:
            # InvalidToken covers bad signature, wrong key, expiry and garbage
            logger.debug(f"Discarding unusable session cookie: {type(e).__name__}: {e}")
            return Session(), e

    def get(self, request: HTTPRequest) -> Session:
        """The request's session; anonymous when the cookie is missing or invalid."""
        session, _ = self._load(request)
        return session

    # =========================================================================
    # ENCODING
    # =========================================================================

    def save(self, response: HTTPResponse, request: HTTPRequest) -> None:
        """
        Re-issue the cookie for the request's current session on `response`.

        Raises SessionError if the session cannot be serialized or the
        resulting cookie would exceed what browsers store.
        """
        session = self.get(request)
        now = int(self.clock())

        try:
            data = json.dumps(session.to_payload(), separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SessionError(f"Session is not serializable: {e}") from e

        token = self._fernet.encrypt_at_time(data, now).decode("ascii")
        header = self._cookie_header(token, now)
        if len(header) > MAX_COOKIE_SIZE:
            raise SessionError(f"Session cookie too large ({len(header)} bytes)")

        response.headers["Set-Cookie"] = header

    def _cookie_header(self, value: str, now: int) -> str:
        expires = datetime.fromtimestamp(now + self.max_age, tz=timezone.utc)
        parts = [
            f"{self.cookie_name}={value}",
            f"Path={self.path}",
            f"Expires={format_http_date(expires)}",
            f"Max-Age={self.max_age}",
        ]
        if self.http_only:
            parts.append("HttpOnly")
        if self.secure:
            parts.append("Secure")
        if self.same_site:
            parts.append(f"SameSite={self.same_site}")
        return "; ".join(parts)

    # =========================================================================
    # AUTHENTICATION STATE
    # =========================================================================

    def login(self, response: HTTPResponse, request: HTTPRequest, username: str) -> None:
        """
        Record `username` in the session and re-issue the cookie.

        A new session id is assigned so an identifier known before login
        is never carried into the authenticated session.
        """
        session = self._require(request)
        session.id = _new_session_id()
        session.values[USERNAME_KEY] = username
        self.save(response, request)
        logger.info(f"Session login for {username!r}")

    def logout(self, response: HTTPResponse, request: HTTPRequest) -> None:
        """Remove every session value and re-issue the (now empty) cookie."""
        session = self._require(request)
        username = session.username
        session.clear()
        self.save(response, request)
        if username is not None:
            logger.info(f"Session logout for {username!r}")

    def _require(self, request: HTTPRequest) -> Session:
        session, decode_error = self._load(request)
        if decode_error is not None:
            raise SessionError("Invalid session cookie") from decode_error
        return session

    def is_logged_in(self, response: HTTPResponse, request: HTTPRequest) -> bool:
        """
        True if the request carries a logged-in session.

        When it does, the cookie is re-issued on `response` with a fresh
        timestamp: every authenticated check slides the expiry forward.
        Use logged_in() where a check must have no side effect.
        """
        if not self.logged_in(request):
            return False
        try:
            self.save(response, request)
        except SessionError as e:
            logger.warning(f"Could not refresh session cookie: {e}")
        return True

    def logged_in(self, request: HTTPRequest) -> bool:
        """Side-effect free variant of is_logged_in()."""
        return self.get(request).is_authenticated

    def logged_in_user(self, request: HTTPRequest) -> str:
        """The logged-in username, or "" for an anonymous request."""
        return self.get(request).username or ""


def generate_key() -> str:
    """A fresh random session key, suitable for GWS_SESSION_KEYS."""
    return Fernet.generate_key().decode("ascii")
