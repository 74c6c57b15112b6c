"""
=============================================================================
BASE MIDDLEWARE INTERFACE
=============================================================================

Defines the middleware protocol and how middleware is composed around a
terminal handler.

A middleware is a decorator over a Handler. It receives the request and
the next link of the chain, and either short-circuits (403, redirect) or
delegates, optionally changing the response on the way back:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                  ROUTE CHAIN (outermost → innermost)                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Request ─────────────────────────────────────────────────►        │
    │                                                                      │
    │   ┌────────┐   ┌─────────────┐   ┌────────┐   ┌──────────┐  ┌────┐  │
    │   │  CSRF  │──►│ Compression │──►│ Cache  │──►│ AuthGate │─►│ H  │  │
    │   └────────┘   └─────────────┘   └────────┘   └──────────┘  └────┘  │
    │   403 on bad    swap body for     headers      302 to "/"           │
    │   token         gzip stream       computed     when anonymous       │
    │                                                                      │
    │   ◄──────────────────────────────────────────────── Response        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The order is fixed when the chain is built and matters:
- Compression must be outside whatever produces the bytes it encodes.
- Cache headers are attached to the response object before the server
  writes its header block, so they always precede the body.
- The auth gate decides before the terminal handler can touch anything.

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Callable, Iterator, List, Optional
import logging

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)


# The next link of a chain: a middleware-wrapped handler or the terminal one
NextHandler = Callable[[HTTPRequest], HTTPResponse]

MiddlewareFunc = Callable[[HTTPRequest, NextHandler], HTTPResponse]


class Middleware(ABC):
    """
    One layer of a chain.

    Subclasses implement __call__(request, next). Calling `next(request)`
    continues the chain; returning without calling it short-circuits.

        class Stamp(Middleware):
            def __call__(self, request, next):
                response = next(request)
                response.set_header("X-Stamp", "1")
                return response

    Instances are shared by every request routed through their chain, so
    they must not keep per-request state on `self`. Per-request data goes
    in `request.context`.
    """

    @abstractmethod
    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        """Produce the response for `request`, usually via `next`."""

    @property
    def name(self) -> str:
        return type(self).__name__


def _link(layer: Middleware, inner: NextHandler) -> NextHandler:
    """Bind `layer` to everything inside it, giving a plain handler."""
    def linked(request: HTTPRequest) -> HTTPResponse:
        return layer(request, inner)

    linked.__name__ = f"{layer.name}({getattr(inner, '__name__', 'handler')})"
    return linked


class MiddlewarePipeline:
    """
    Middleware to wrap around one handler, first added outermost.

        pipeline = MiddlewarePipeline().use(LoggingMiddleware(), CSRFMiddleware(...))
        handler = pipeline.wrap(router)

    wrap() freezes the pipeline. The built chain is shared by every worker
    thread and never changes, so add() after wrap() raises RuntimeError.
    """

    def __init__(self):
        self._layers: List[Middleware] = []
        self._frozen = False

    def add(self, middleware: Middleware) -> "MiddlewarePipeline":
        if self._frozen:
            raise RuntimeError(f"Cannot add {middleware.name}: the chain is already built")
        self._layers.append(middleware)
        logger.debug(f"Added middleware: {middleware.name}")
        return self

    def use(self, *middleware: Middleware) -> "MiddlewarePipeline":
        for layer in middleware:
            self.add(layer)
        return self

    def wrap(self, handler: NextHandler) -> NextHandler:
        """Build the chain: [A, B, C] around h calls A → B → C → h."""
        self._frozen = True
        linked = handler
        for layer in reversed(self._layers):
            linked = _link(layer, linked)
        return linked

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return len(self._layers)

    def __iter__(self) -> Iterator[Middleware]:
        return iter(self._layers)


def chain(handler: NextHandler, *middleware: Middleware) -> NextHandler:
    """
    Compose `middleware` (outermost first) around `handler`.

        chain(about, CompressionMiddleware())
        chain(files, CompressionMiddleware(), CacheMiddleware(policy))
    """
    return MiddlewarePipeline().use(*middleware).wrap(handler)


class FunctionMiddleware(Middleware):
    """A plain `(request, next) -> response` function used as a layer."""

    def __init__(self, func: MiddlewareFunc, name: Optional[str] = None):
        self.func = func
        self._name = name or getattr(func, "__name__", "FunctionMiddleware")

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        return self.func(request, next)

    @property
    def name(self) -> str:
        return self._name


def function_middleware(func: Optional[MiddlewareFunc] = None, *, name: Optional[str] = None):
    """
    Decorator turning a function into middleware, optionally named:

        @function_middleware
        def no_store(request, next):
            response = next(request)
            response.set_header("Cache-Control", "no-store")
            return response

        @function_middleware(name="timing")
        def timed(request, next): ...
    """
    if func is None:
        return lambda f: FunctionMiddleware(f, name)
    return FunctionMiddleware(func, name)
