"""
pytest configuration and fixtures.
"""

import threading
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional
from urllib.parse import urlencode
import re

import pytest
from cryptography.fernet import Fernet

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from gws import HTTPServer, ServerConfig, SessionStore, create_app
from gws.http import HTTPRequest, HTTPResponse


CSRF_KEY = "test-csrf-secret"

USERS = {"alice": "wonderland"}

CSRF_FIELD_PATTERN = re.compile(r'name="csrf_token" value="([^"]+)"')


def authenticate(username: str, password: str) -> bool:
    return USERS.get(username) == password


def make_request(
    method: str = "GET",
    path: str = "/",
    headers: Optional[Dict[str, str]] = None,
    cookie: Optional[str] = None,
    form: Optional[Dict[str, str]] = None,
    body: bytes = b"",
    version: str = "HTTP/1.1",
) -> HTTPRequest:
    """Build an HTTPRequest the way the parser would (lower-case header names)."""
    all_headers = {name.lower(): value for name, value in (headers or {}).items()}
    if cookie:
        all_headers["cookie"] = cookie
    if form is not None:
        body = urlencode(form).encode("utf-8")
        all_headers["content-type"] = "application/x-www-form-urlencoded"
    if body:
        all_headers["content-length"] = str(len(body))
    return HTTPRequest(
        method=method,
        path=path,
        version=version,
        headers=all_headers,
        body=body,
        client_address=("127.0.0.1", 50000),
    )


def cookie_from(response: HTTPResponse) -> str:
    """The "name=value" pair a browser would send back for response's Set-Cookie."""
    return response.headers["Set-Cookie"].split(";", 1)[0]


def csrf_from(body: bytes) -> str:
    match = CSRF_FIELD_PATTERN.search(body.decode("utf-8"))
    assert match, "page has no CSRF field"
    return match.group(1)


@pytest.fixture
def session_keys() -> List[str]:
    return [Fernet.generate_key().decode("ascii")]


@pytest.fixture
def sessions(session_keys: List[str]) -> SessionStore:
    return SessionStore(session_keys)


@pytest.fixture
def request_factory() -> Callable[..., HTTPRequest]:
    return make_request


@pytest.fixture
def static_dir(tmp_path: Path) -> Path:
    """A static tree with a stylesheet and a favicon."""
    root = tmp_path / "static"
    (root / "css").mkdir(parents=True)
    (root / "css" / "site.css").write_text("body { color: #222; }\n")
    (root / "favicon.ico").write_bytes(b"\x00\x00\x01\x00fake-icon")
    (tmp_path / "secret.txt").write_text("outside the static root\n")
    return root


@pytest.fixture
def config(session_keys: List[str], static_dir: Path) -> ServerConfig:
    """Test configuration: loopback, OS-assigned port, small pool."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,
        min_workers=2,
        max_workers=4,
        read_timeout=5.0,
        write_timeout=5.0,
        static_dir=str(static_dir),
        session_keys=session_keys,
        csrf_key=CSRF_KEY,
        log_level="WARNING",
    )


@pytest.fixture
def app(config: ServerConfig) -> HTTPServer:
    """The full site with login enabled."""
    return create_app(config, authenticate=authenticate)


class TestServer:
    """Runs an HTTPServer on a background thread."""

    __test__ = False

    def __init__(self, server: HTTPServer):
        self.server = server
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def start(self):
        self._thread = threading.Thread(
            target=self.server.run,
            kwargs={"port": 0},
            daemon=True,
        )
        self._thread.start()
        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def stop(self):
        self.server.shutdown()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=10.0)


@pytest.fixture
def live_server(app: HTTPServer) -> Generator[TestServer, None, None]:
    test_srv = TestServer(app)
    test_srv.start()
    yield test_srv
    test_srv.stop()
