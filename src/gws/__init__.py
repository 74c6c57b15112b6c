"""
=============================================================================
GWS
=============================================================================

A small threaded HTTP/1.1 web server: a home page, an about page, static
files and a favicon, composed from middleware (gzip, cache headers, CSRF,
auth gate), plus an encrypted cookie session with login and logout.

    $ export GWS_SESSION_KEYS=$(python -m gws --generate-key)
    $ export GWS_CSRF_KEY=$(python -m gws --generate-key)
    $ python -m gws --listen :9099

    from gws import ServerConfig, create_app

    server = create_app(ServerConfig.from_env(), authenticate=check_password)
    server.run()

=============================================================================
"""

__version__ = "1.0.0"

from .app import Site, create_app
from .config import ServerConfig
from .server import HTTPServer
from .session import Session, SessionError, SessionStore
from .templates import TemplateLoadError, TemplateSet

__all__ = [
    "Site",
    "create_app",
    "ServerConfig",
    "HTTPServer",
    "Session",
    "SessionError",
    "SessionStore",
    "TemplateLoadError",
    "TemplateSet",
    "__version__",
]
