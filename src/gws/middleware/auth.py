"""
Authentication gate.

Lets a request reach its handler only when the session says somebody is
logged in. Anonymous visitors are redirected instead:

    GET /account  (no session)   ──►  302 Found, Location: /
    GET /account  (logged in)    ──►  handler

The check is the read-only SessionStore.logged_in(), so a rejected
request never gets a cookie and the wrapped handler never runs.
"""

import logging

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, redirect
from ..http.status_codes import HTTPStatus
from ..session import SessionStore


logger = logging.getLogger(__name__)


class AuthGate(Middleware):
    def __init__(self, sessions: SessionStore, redirect_to: str = "/"):
        self.sessions = sessions
        self.redirect_to = redirect_to

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        if not self.sessions.logged_in(request):
            logger.debug(f"Anonymous request for {request.raw_path}, redirecting to {self.redirect_to}")
            return redirect(self.redirect_to, HTTPStatus.FOUND)
        return next(request)
