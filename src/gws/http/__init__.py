"""
HTTP protocol layer: request parsing, response model and serialization,
path routing, status codes and MIME types.
"""

from .request import HTTPRequest, RequestParser, HTTPParseError, client_ip
from .response import (
    HTTPResponse,
    ResponseBuilder,
    format_http_date,
    ok,
    redirect,
    error,
    unauthorized,
    forbidden,
    not_found,
    method_not_allowed,
    internal_error,
)
from .router import Router, Route, Handler, strip_prefix
from .status_codes import HTTPStatus
from .mime_types import get_mime_type, get_content_type

__all__ = [
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "client_ip",
    "HTTPResponse",
    "ResponseBuilder",
    "format_http_date",
    "ok",
    "redirect",
    "error",
    "unauthorized",
    "forbidden",
    "not_found",
    "method_not_allowed",
    "internal_error",
    "Router",
    "Route",
    "Handler",
    "strip_prefix",
    "HTTPStatus",
    "get_mime_type",
    "get_content_type",
]
