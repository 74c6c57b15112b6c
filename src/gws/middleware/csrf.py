"""
=============================================================================
CSRF MIDDLEWARE
=============================================================================

Rejects state-changing requests that were not submitted from one of our
own pages.

=============================================================================
TOKENS
=============================================================================

    session cookie                         rendered form
    ┌──────────────────────────┐           ┌─────────────────────────────┐
    │ "csrf": <32 random bytes>│──HMAC────►│ <input type="hidden"        │
    │   (urlsafe base64)       │ (secret)  │   name="csrf_token"         │
    └──────────────────────────┘           │   value="base64url(mac)">   │
                                           └─────────────────────────────┘

The raw token never leaves the encrypted cookie. Pages embed only its HMAC
under a server secret, so a leaked page does not reveal the cookie value
and a token minted under another secret never verifies.

Tokens are minted lazily: the first time a handler calls csrf_token() or
csrf_field() for a session without one. Only then is the session cookie
re-issued, so static files and pages without forms never set cookies.

=============================================================================
VERIFICATION
=============================================================================

    GET, HEAD, OPTIONS, TRACE   ──►  pass through
    anything else               ──►  X-CSRF-Token header, else form field
                                     missing    → 403 CSRF token missing
                                     mismatch   → 403 CSRF token invalid
                                     match      → handler

Comparison is constant-time (hmac.compare_digest). A rejected request
never reaches a handler and never gets a cookie.

=============================================================================
"""

from typing import Optional, Union
import base64
import hashlib
import hmac
import logging
import secrets

from markupsafe import Markup

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest, client_ip
from ..http.response import HTTPResponse, forbidden
from ..session import SessionError, SessionStore


logger = logging.getLogger(__name__)


SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})

CSRF_CONTEXT_KEY = "gws.csrf"

TOKEN_MISSING = "Forbidden - CSRF token missing"
TOKEN_INVALID = "Forbidden - CSRF token invalid"


class _TokenIssuer:
    """Per-request handle that mints and masks the session's CSRF token."""

    def __init__(self, middleware: "CSRFMiddleware", request: HTTPRequest):
        self._middleware = middleware
        self._request = request
        self.minted = False

    def __call__(self) -> str:
        session = self._middleware.sessions.get(self._request)
        if not session.csrf_token:
            session.csrf_token = secrets.token_urlsafe(32)
            self.minted = True
        return self._middleware.form_token(session.csrf_token)


class CSRFMiddleware(Middleware):
    """
    Synchronizer-token CSRF protection bound to the session cookie.

        server.use(CSRFMiddleware(sessions, secret=config.csrf_key))

    Handlers embed the token with csrf_field(request) (or read it with
    csrf_token(request) for JavaScript clients sending X-CSRF-Token).
    """

    def __init__(
        self,
        sessions: SessionStore,
        secret: Union[str, bytes],
        field_name: str = "csrf_token",
        header_name: str = "X-CSRF-Token",
    ):
        if not secret:
            raise ValueError("A CSRF secret key is required")
        self.sessions = sessions
        self._secret = secret.encode("utf-8") if isinstance(secret, str) else secret
        self.field_name = field_name
        self.header_name = header_name

    def form_token(self, raw_token: str) -> str:
        """The value pages embed for `raw_token`."""
        mac = hmac.new(self._secret, raw_token.encode("ascii"), hashlib.sha256).digest()
        return base64.urlsafe_b64encode(mac).rstrip(b"=").decode("ascii")

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        issuer = _TokenIssuer(self, request)
        request.context[CSRF_CONTEXT_KEY] = (self, issuer)

        if request.method not in SAFE_METHODS:
            rejection = self._verify(request)
            if rejection is not None:
                logger.warning(
                    f"{rejection}: {request.method} {request.raw_path} from {client_ip(request)}"
                )
                return forbidden(rejection)

        response = next(request)

        if issuer.minted:
            try:
                self.sessions.save(response, request)
            except SessionError as e:
                logger.error(f"Could not persist CSRF token: {e}")

        return response

    def _verify(self, request: HTTPRequest) -> Optional[str]:
        """None when the request carries a valid token, else the rejection message."""
        submitted = request.get_header(self.header_name) or request.get_form(self.field_name)
        if not submitted:
            return TOKEN_MISSING

        raw_token = self.sessions.get(request).csrf_token
        if not raw_token:
            return TOKEN_INVALID

        expected = self.form_token(raw_token)
        if not hmac.compare_digest(submitted.encode("utf-8"), expected.encode("ascii")):
            return TOKEN_INVALID
        return None


def _issuer(request: HTTPRequest):
    installed = request.context.get(CSRF_CONTEXT_KEY)
    if installed is None:
        raise RuntimeError("CSRFMiddleware is not installed for this request")
    return installed


def csrf_token(request: HTTPRequest) -> str:
    """The masked CSRF token for `request`, minting one if the session has none."""
    _, issuer = _issuer(request)
    return issuer()


def csrf_field(request: HTTPRequest) -> Markup:
    """A hidden form input carrying the CSRF token, safe to embed unescaped."""
    middleware, issuer = _issuer(request)
    return Markup('<input type="hidden" name="{}" value="{}">').format(
        middleware.field_name, issuer()
    )
