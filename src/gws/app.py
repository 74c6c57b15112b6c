"""
=============================================================================
GWS APPLICATION
=============================================================================

The pages GWS serves and the route table that wires them to middleware.

    ┌──────────────┬───────────────────────────────────────────────────┐
    │ route        │ chain (outermost → innermost)                     │
    ├──────────────┼───────────────────────────────────────────────────┤
    │ /            │ home                                              │
    │ /about       │ gzip → about                                      │
    │ /favicon.ico │ cache → static file favicon.ico                   │
    │ /static/     │ gzip → cache → strip "/static" → static files     │
    │ /account     │ gzip → auth gate → account          (with login)  │
    │ /login       │ POST: authenticate, start session   (with login)  │
    │ /logout      │ POST: end session                   (with login)  │
    └──────────────┴───────────────────────────────────────────────────┘

    Around the whole router:  access log → CSRF

Login routes exist only when an `authenticate(username, password)`
callable is supplied; GWS itself stores no credentials.

=============================================================================
"""

import logging
from typing import Any, Callable, Dict, Optional

from .config import ServerConfig
from .handlers.static import StaticFileHandler
from .http import (
    HTTPRequest, HTTPResponse, HTTPStatus, client_ip, strip_prefix,
    error, internal_error, method_not_allowed, redirect, unauthorized,
)
from .middleware import (
    AuthGate, CacheMiddleware, CompressionMiddleware, CSRFMiddleware,
    LoggingMiddleware, csrf_field, secure_headers,
)
from .server import HTTPServer
from .session import SessionError, SessionStore
from .templates import TemplateSet


logger = logging.getLogger(__name__)


Authenticator = Callable[[str, str], bool]

SITE_TITLE = "GWS: Go Web Server"
ABOUT_TITLE = "About GWS"
ABOUT_TEXT = "GWS is a small Python web server"


class Site:
    """The terminal page handlers."""

    def __init__(
        self,
        templates: TemplateSet,
        sessions: SessionStore,
        authenticate: Optional[Authenticator] = None,
    ):
        self.templates = templates
        self.sessions = sessions
        self.authenticate = authenticate

    @property
    def login_enabled(self) -> bool:
        return self.authenticate is not None

    def render(self, request: HTTPRequest, page: str, data: Dict[str, Any]) -> HTTPResponse:
        """
        A 200 response streaming `page`, with the security headers set.

        `data` is built before this is called; only the template output
        is produced lazily.
        """
        context = {
            "logged_in": self.sessions.logged_in(request),
            "username": self.sessions.logged_in_user(request),
            "login_enabled": self.login_enabled,
            "csrf_field": "",
        }
        context.update(data)
        response = HTTPResponse(status=HTTPStatus.OK, body=self.templates.render(page, context))
        return secure_headers(response)

    # =========================================================================
    # PAGES
    # =========================================================================

    def home(self, request: HTTPRequest) -> HTTPResponse:
        # "/" is a subtree pattern, so it sees every path nothing else claims
        if request.path != "/":
            return error(HTTPStatus.NOT_FOUND, "Page Not Found")
        data: Dict[str, Any] = {"title": SITE_TITLE}
        if self.login_enabled:
            data["csrf_field"] = csrf_field(request)
        return self.render(request, "home", data)

    def about(self, request: HTTPRequest) -> HTTPResponse:
        return self.render(request, "about", {"title": ABOUT_TITLE, "about": ABOUT_TEXT})

    def account(self, request: HTTPRequest) -> HTTPResponse:
        response = self.render(request, "account", {
            "title": "Account",
            "csrf_field": csrf_field(request),
        })
        # every visit extends the session by another max_age
        self.sessions.is_logged_in(response, request)
        return response

    # =========================================================================
    # SESSION ACTIONS
    # =========================================================================

    def login(self, request: HTTPRequest) -> HTTPResponse:
        if request.method != "POST":
            return method_not_allowed(["POST"])

        username = (request.get_form("username") or "").strip()
        password = request.get_form("password") or ""

        if not username or not self.authenticate(username, password):
            logger.info(f"Failed login for {username!r} from {client_ip(request)}")
            return unauthorized("Invalid username or password")

        response = redirect("/account", HTTPStatus.SEE_OTHER)
        try:
            self.sessions.login(response, request, username)
        except SessionError as e:
            logger.error(f"Login for {username!r} failed: {e}")
            return internal_error()
        return response

    def logout(self, request: HTTPRequest) -> HTTPResponse:
        if request.method != "POST":
            return method_not_allowed(["POST"])

        response = redirect("/", HTTPStatus.SEE_OTHER)
        try:
            self.sessions.logout(response, request)
        except SessionError as e:
            logger.error(f"Logout failed: {e}")
            return internal_error()
        return response


def create_sessions(config: ServerConfig) -> SessionStore:
    return SessionStore(config.session_keys, secure=config.cookie_secure)


def create_app(
    config: Optional[ServerConfig] = None,
    templates: Optional[TemplateSet] = None,
    sessions: Optional[SessionStore] = None,
    authenticate: Optional[Authenticator] = None,
) -> HTTPServer:
    """
    Build the GWS server: pages, static files, middleware and routes.

    Raises ValueError for missing or invalid secrets and TemplateLoadError
    for unusable templates, before anything is bound.
    """
    config = config or ServerConfig.from_env()
    config.validate()
    if sessions is None:
        config.validate_secrets()
        sessions = create_sessions(config)
    elif not config.csrf_key:
        raise ValueError("No CSRF key configured: set GWS_CSRF_KEY")

    templates = templates or TemplateSet(config.template_dir)
    site = Site(templates, sessions, authenticate)
    static = StaticFileHandler(config.static_dir)

    gzip = CompressionMiddleware()
    cache = CacheMiddleware()

    server = HTTPServer(config)
    server.use(LoggingMiddleware(log_format=config.log_format))
    server.use(CSRFMiddleware(sessions, config.csrf_key))

    router = server.router
    router.handle("/", site.home, name="home")
    router.handle("/about", site.about, gzip, name="about")
    router.handle("/favicon.ico", static.file("favicon.ico"), cache, name="favicon")
    router.handle("/static/", strip_prefix("/static", static), gzip, cache, name="static")

    if site.login_enabled:
        router.handle("/account", site.account, gzip, AuthGate(sessions), name="account")
        router.handle("/login", site.login, name="login")
        router.handle("/logout", site.logout, name="logout")

    return server
