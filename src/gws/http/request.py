"""
=============================================================================
HTTP REQUEST PARSER
=============================================================================

Parses raw HTTP/1.1 request bytes into HTTPRequest objects (RFC 9112).

    GET /about?lang=en HTTP/1.1\r\n        ← request line
    Host: localhost:8080\r\n               ← headers (names lower-cased)
    Accept-Encoding: gzip, deflate\r\n
    Cookie: gws_session=gAAAAAB...\r\n
    \r\n                                   ← end of header block
    username=alice&csrf_token=...          ← optional body

Besides the wire fields, every HTTPRequest carries a `context` dict. It is
the only place request-scoped state lives while the request travels down a
middleware chain: the decoded session, the CSRF token issuer, the request
id. Nothing in it outlives the request, so concurrent requests on different
worker threads never share mutable state.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from urllib.parse import parse_qs, urlparse, unquote
import re


class HTTPParseError(Exception):
    """
    Raised when a request cannot be parsed.

    Carries the status code the server should answer with
    (400 by default; 405, 413, 431 and 505 for the specific cases).
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    Header names are stored lower-cased. `path` is URL-decoded and has no
    query string, which is kept undecoded in `query`. Routing may rewrite
    `path` (see `strip_prefix`); the original is kept in `raw_path`.
    """

    method: str
    path: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, list[str]] = field(default_factory=dict)
    query: str = ""
    body: bytes = b""
    client_address: tuple[str, int] = ("", 0)
    raw_path: str = ""
    context: Dict[str, Any] = field(default_factory=dict, repr=False)

    _cookies: Optional[Dict[str, str]] = field(default=None, repr=False)
    _form: Optional[Dict[str, list[str]]] = field(default=None, repr=False)

    def __post_init__(self):
        if not self.raw_path:
            self.raw_path = self.path

    # =========================================================================
    # HEADER ACCESSORS
    # =========================================================================

    @property
    def content_type(self) -> Optional[str]:
        """Media type without parameters ("text/html; charset=utf-8" → "text/html")."""
        ct = self.headers.get("content-type", "")
        return ct.split(";")[0].strip().lower() or None

    @property
    def content_length(self) -> int:
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def host(self) -> str:
        return self.headers.get("host", "")

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def is_keep_alive(self) -> bool:
        """HTTP/1.1 defaults to persistent connections, HTTP/1.0 does not."""
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    def get_header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.query_params.get(name, [])
        return values[0] if values else default

    # =========================================================================
    # COOKIES
    # =========================================================================

    @property
    def cookies(self) -> Dict[str, str]:
        """
        Cookies sent by the client, by name.

        Parsed leniently: pairs without "=" are skipped and, as browsers
        do, the first occurrence of a repeated name wins.
        """
        if self._cookies is None:
            cookies: Dict[str, str] = {}
            for pair in self.headers.get("cookie", "").split(";"):
                name, sep, value = pair.strip().partition("=")
                if not sep or not name:
                    continue
                value = value.strip()
                if len(value) >= 2 and value[0] == value[-1] == '"':
                    value = value[1:-1]
                cookies.setdefault(name.strip(), value)
            self._cookies = cookies
        return self._cookies

    def get_cookie(self, name: str) -> Optional[str]:
        return self.cookies.get(name)

    # =========================================================================
    # FORM BODIES
    # =========================================================================

    @property
    def form(self) -> Dict[str, list[str]]:
        """
        Fields of an application/x-www-form-urlencoded body.

        Any other content type yields an empty mapping.
        """
        if self._form is None:
            if self.content_type == "application/x-www-form-urlencoded" and self.body:
                try:
                    text = self.body.decode("utf-8")
                except UnicodeDecodeError as e:
                    raise HTTPParseError(f"Invalid form body: {e}")
                self._form = parse_qs(text, keep_blank_values=True)
            else:
                self._form = {}
        return self._form

    def get_form(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.form.get(name, [])
        return values[0] if values else default


class RequestParser:
    """
    Turns the bytes of one request (as framed by Connection.read_request)
    into an HTTPRequest. Every rejection is an HTTPParseError carrying the
    status to answer with.
    """

    METHODS = frozenset({
        "GET", "HEAD", "POST", "PUT", "DELETE",
        "PATCH", "OPTIONS", "TRACE", "CONNECT",
    })
    VERSIONS = ("HTTP/1.0", "HTTP/1.1")

    _REQUEST_LINE = re.compile(r"([A-Z]+) (\S+) (HTTP/\d\.\d)")

    def __init__(
        self,
        max_request_size: int = 10 * 1024 * 1024,
        max_header_bytes: int = 1 << 20,
    ):
        self.max_request_size = max_request_size
        self.max_header_bytes = max_header_bytes

    def parse(self, data: bytes, client_address: tuple[str, int] = ("", 0)) -> HTTPRequest:
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        head, separator, rest = data.partition(b"\r\n\r\n")
        if not separator:
            raise HTTPParseError("Incomplete request: no header terminator")
        if len(head) > self.max_header_bytes:
            raise HTTPParseError("Request header block too large", status_code=431)

        request_line, *field_lines = head.decode("latin-1").split("\r\n")
        method, target, version = self._request_line(request_line)
        headers = self._fields(field_lines)
        body = rest[:self._body_length(headers, len(rest))]

        url = urlparse(target)
        path = unquote(url.path) or "/"
        # static files re-check containment after resolving symlinks
        if ".." in path.split("/"):
            raise HTTPParseError("Invalid path: contains ..")

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query_params=parse_qs(url.query, keep_blank_values=True),
            query=url.query,
            body=body,
            client_address=client_address,
        )

    def _request_line(self, line: str) -> tuple[str, str, str]:
        match = self._REQUEST_LINE.fullmatch(line)
        if match is None:
            raise HTTPParseError(f"Invalid request line: {line!r}")
        method, target, version = match.groups()
        if method not in self.METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)
        if version not in self.VERSIONS:
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)
        return method, target, version

    @staticmethod
    def _fields(lines: list[str]) -> Dict[str, str]:
        """Header fields keyed by lower-cased name. Repeats are merged, folded lines joined."""
        headers: Dict[str, str] = {}
        last: Optional[str] = None

        for line in filter(None, lines):
            if line[0] in " \t":
                if last is not None:
                    headers[last] = f"{headers[last]} {line.strip()}"
                continue

            name, colon, value = line.partition(":")
            name = name.strip().lower()
            if not colon or not name:
                continue
            value = value.strip()
            last = name

            if name not in headers:
                headers[name] = value
            elif name == "cookie":
                # RFC 6265 joins cookie-pairs with "; "
                headers[name] = f"{headers[name]}; {value}"
            else:
                headers[name] = f"{headers[name]}, {value}"

        return headers

    @staticmethod
    def _body_length(headers: Dict[str, str], available: int) -> int:
        raw = headers.get("content-length", "0")
        if not (raw.isascii() and raw.isdigit()):
            raise HTTPParseError("Invalid Content-Length header")
        length = int(raw)
        if available < length:
            raise HTTPParseError(f"Incomplete body: expected {length} bytes, got {available}")
        return length


def parse_request(
    data: bytes,
    client_address: tuple[str, int] = ("", 0),
    max_size: int = 10 * 1024 * 1024
) -> HTTPRequest:
    """Parse raw request bytes with default limits."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)


def client_ip(request: HTTPRequest) -> str:
    """
    The address of the client that sent `request`.

    Behind a reverse proxy the peer address is the proxy's, so the first
    entry of X-Forwarded-For is used when present. The header is supplied
    by the client, so only trust it when a proxy you control sets it.
    """
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    return request.client_address[0] or "-"
