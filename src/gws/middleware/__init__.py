"""
Middleware: composable request/response decorators.

    (LoggingMiddleware) → CSRFMiddleware → CompressionMiddleware
        → CacheMiddleware → AuthGate → handler
"""

from .base import Middleware, MiddlewarePipeline, NextHandler, chain, function_middleware
from .auth import AuthGate
from .cache import CacheMiddleware, CachePolicy, CacheRule, DEFAULT_POLICY, normalize_gmt
from .compression import CompressionMiddleware, accepts_gzip
from .csrf import CSRFMiddleware, csrf_field, csrf_token
from .headers import SECURE_HEADERS, secure_headers
from .logging import LoggingMiddleware

__all__ = [
    "Middleware",
    "MiddlewarePipeline",
    "NextHandler",
    "chain",
    "function_middleware",
    "AuthGate",
    "CacheMiddleware",
    "CachePolicy",
    "CacheRule",
    "DEFAULT_POLICY",
    "normalize_gmt",
    "CompressionMiddleware",
    "accepts_gzip",
    "CSRFMiddleware",
    "csrf_field",
    "csrf_token",
    "SECURE_HEADERS",
    "secure_headers",
    "LoggingMiddleware",
]
