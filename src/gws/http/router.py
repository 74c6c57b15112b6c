"""
=============================================================================
URL ROUTER
=============================================================================

Maps request paths to handlers.

=============================================================================
PATTERN RULES
=============================================================================

Two kinds of patterns, both fixed strings:

    "/about"      EXACT     matches only "/about"
    "/static/"    SUBTREE   matches "/static/" and everything below it
    "/"           SUBTREE   matches every path (the catch-all)

When several patterns match, the LONGEST one wins, regardless of the order
they were registered in:

    ┌───────────────────────┬──────────────────────────────────────┐
    │ Request path          │ Winning pattern                      │
    ├───────────────────────┼──────────────────────────────────────┤
    │ /                     │ /                                    │
    │ /about                │ /about                               │
    │ /about/team           │ /          (exact patterns only     │
    │                       │             match themselves)        │
    │ /static/css/site.css  │ /static/                             │
    │ /static               │ → 301 to /static/                    │
    │ /nope                 │ /          (handler decides on 404)  │
    └───────────────────────┴──────────────────────────────────────┘

A handler registered here is normally a pre-built middleware chain (see
gws.middleware.base.chain). Chains are composed once, at registration, and
the router only ever reads its table afterwards, so worker threads share
it without locking.

=============================================================================
"""

from dataclasses import dataclass
from typing import Callable, Optional, List
import logging

from .request import HTTPRequest
from .response import HTTPResponse, not_found, redirect
from .status_codes import HTTPStatus
from ..middleware.base import Middleware, chain


logger = logging.getLogger(__name__)

# Handler: takes a request, returns a response. Terminal handlers and
# composed middleware chains share this signature.
Handler = Callable[[HTTPRequest], HTTPResponse]


@dataclass(frozen=True)
class Route:
    pattern: str
    handler: Handler
    name: Optional[str] = None

    @property
    def is_subtree(self) -> bool:
        return self.pattern.endswith("/")

    def matches(self, path: str) -> bool:
        if self.is_subtree:
            return path.startswith(self.pattern)
        return path == self.pattern


class Router:
    """
    Path-based request dispatcher.

        router = Router()
        router.handle("/", home)
        router.handle("/static/", chain(strip_prefix("/static", files), gzip, cache))

        @router.route("/about")
        def about(request):
            ...

        response = router(request)
    """

    def __init__(self):
        self._routes: List[Route] = []

    def handle(
        self,
        pattern: str,
        handler: Handler,
        *middleware: Middleware,
        name: Optional[str] = None,
    ) -> Route:
        """
        Register `handler` for `pattern`, wrapped in `middleware` (first is
        outermost). Re-registering a pattern is an error.
        """
        if not pattern.startswith("/"):
            raise ValueError(f"Route pattern must start with '/': {pattern!r}")
        if any(route.pattern == pattern for route in self._routes):
            raise ValueError(f"Route pattern registered twice: {pattern!r}")

        if middleware:
            handler = chain(handler, *middleware)
        route = Route(pattern=pattern, handler=handler, name=name or getattr(handler, "__name__", None))
        self._routes.append(route)
        # Longest pattern first, so the first match is the most specific one
        self._routes.sort(key=lambda r: len(r.pattern), reverse=True)
        logger.debug(f"Registered route {pattern}")
        return route

    def route(self, pattern: str, name: Optional[str] = None) -> Callable[[Handler], Handler]:
        """Decorator form of handle()."""
        def decorator(handler: Handler) -> Handler:
            self.handle(pattern, handler, name=name)
            return handler
        return decorator

    def match(self, path: str) -> Optional[Route]:
        for route in self._routes:
            if route.matches(path):
                return route
        return None

    def dispatch(self, request: HTTPRequest) -> HTTPResponse:
        route = self.match(request.path)

        # "/static" with a "/static/" subtree registered: send the client to
        # the canonical, slash-terminated URL instead of the catch-all
        if not request.path.endswith("/"):
            subtree = request.path + "/"
            if (route is None or route.pattern != request.path) and \
                    any(r.pattern == subtree for r in self._routes):
                location = f"{subtree}?{request.query}" if request.query else subtree
                return redirect(location, HTTPStatus.MOVED_PERMANENTLY)

        if route is None:
            return not_found()
        return route.handler(request)

    __call__ = dispatch

    def routes(self) -> List[Route]:
        return sorted(self._routes, key=lambda r: r.pattern)


def strip_prefix(prefix: str, handler: Handler) -> Handler:
    """
    Serve requests by removing `prefix` from the path before calling
    `handler`; paths outside the prefix get a 404.

        strip_prefix("/static", files)   # /static/css/a.css → /css/a.css
    """
    def stripped(request: HTTPRequest) -> HTTPResponse:
        if not request.path.startswith(prefix):
            return not_found()
        request.path = request.path[len(prefix):] or "/"
        return handler(request)

    stripped.__name__ = f"strip_prefix({prefix})"
    return stripped
