"""
=============================================================================
CACHE-CONTROL MIDDLEWARE
=============================================================================

Annotates responses with freshness headers taken from a path-matched
policy table:

    Cache-Control: public, max-age=31968000
    Expires: Thu, 21 Jan 2027 09:12:03 GMT

=============================================================================
POLICY TABLE
=============================================================================

An ordered list of rules, first match wins, with a default rule that
always matches:

    ┌───────────────┬──────────────┬───────────────┐
    │ pattern       │ max-age      │ Expires in    │
    ├───────────────┼──────────────┼───────────────┤
    │ /static/      │ 370 days     │ 367 days      │
    │ /favicon.ico  │ 7 days       │ 7 days        │
    │ (default)     │ 370 days     │ 367 days      │
    └───────────────┴──────────────┴───────────────┘

Long lifetimes suit fingerprinted or rarely changing assets; rename an
asset when it changes.

Expires must be an HTTP-date, which is always GMT (RFC 9110 §5.6.7). The
date is computed in UTC and formatted with the literal "GMT" zone, and
normalize_gmt() rewrites any other zone label a locale-dependent
formatter might produce ("EAT", "UTC", "+0000") to "GMT".

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
import re
import time

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, format_http_date


DAY = 24 * 3600

_TRAILING_ZONE = re.compile(r"\s+(?:[A-Za-z]{2,5}|[+-]\d{4})$")


def normalize_gmt(http_date: str) -> str:
    """
    Replace the trailing time-zone label of a formatted date with "GMT".

        >>> normalize_gmt("Mon, 02 Jan 2006 15:04:05 EAT")
        'Mon, 02 Jan 2006 15:04:05 GMT'

    Only the label changes: callers must already have converted the
    time itself to UTC.
    """
    return _TRAILING_ZONE.sub(" GMT", http_date.rstrip())


@dataclass(frozen=True)
class CacheRule:
    """
    One row of the policy table.

    `pattern`: "*" matches every path, a pattern ending in "/" matches
    that subtree, anything else matches one exact path.
    """

    pattern: str
    max_age: int
    expires_in: int

    def matches(self, path: str) -> bool:
        if self.pattern == "*":
            return True
        if self.pattern.endswith("/"):
            return path.startswith(self.pattern)
        return path == self.pattern


DEFAULT_RULE = CacheRule("*", max_age=370 * DAY, expires_in=367 * DAY)


@dataclass(frozen=True)
class CachePolicy:
    rules: List[CacheRule] = field(default_factory=list)
    default: CacheRule = DEFAULT_RULE

    def match(self, path: str) -> CacheRule:
        for rule in self.rules:
            if rule.matches(path):
                return rule
        return self.default


DEFAULT_POLICY = CachePolicy(rules=[
    CacheRule("/static/", max_age=370 * DAY, expires_in=367 * DAY),
    CacheRule("/favicon.ico", max_age=7 * DAY, expires_in=7 * DAY),
])


class CacheMiddleware(Middleware):
    """
    Adds Cache-Control/Expires from `policy` to successful responses.

    The policy is looked up with the path the request arrived with
    (`raw_path`), so a rule for "/static/" still matches after an inner
    strip_prefix. Headers are computed at request time and applied after
    the handler returns without overriding values the handler chose
    itself. Error responses (4xx/5xx) are left uncached. Exceptions from
    the handler propagate unchanged.
    """

    def __init__(
        self,
        policy: CachePolicy = DEFAULT_POLICY,
        clock: Callable[[], float] = time.time,
    ):
        self.policy = policy
        self.clock = clock

    def cache_headers(self, path: str, now: Optional[float] = None) -> Dict[str, str]:
        rule = self.policy.match(path)
        issued = datetime.fromtimestamp(self.clock() if now is None else now, tz=timezone.utc)
        expires = issued + timedelta(seconds=rule.expires_in)
        return {
            "Cache-Control": f"public, max-age={rule.max_age}",
            "Expires": normalize_gmt(format_http_date(expires)),
        }

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        headers = self.cache_headers(request.raw_path)

        response = next(request)

        if response.status >= 400:
            return response
        for name, value in headers.items():
            response.headers.setdefault(name, value)
        return response
