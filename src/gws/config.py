"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Everything the server needs to start, in one dataclass.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m gws --listen :9099                              │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── GWS_LISTEN_ADDR=:9099 python -m gws                       │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
SECRETS
=============================================================================

Session and CSRF keys have no defaults. A literal key in source would be
shared by every deployment, so a server without keys refuses to start:

    GWS_SESSION_KEYS   comma-separated Fernet keys, newest first
    GWS_CSRF_KEY       any high-entropy string

    $ python -m gws --generate-key      # prints a fresh Fernet key

=============================================================================
"""

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple


DEFAULT_LISTEN_ADDR = "localhost:8080"

_TRUE_VALUES = ("1", "true", "yes", "on")


def parse_listen_addr(addr: str) -> Tuple[str, int]:
    """
    Split a "host:port" listen address.

        parse_listen_addr("localhost:8080")  → ("localhost", 8080)
        parse_listen_addr(":9099")           → ("0.0.0.0", 9099)
        parse_listen_addr("[::1]:8080")      → ("::1", 8080)

    An empty host means every interface. Raises ValueError when the port
    is missing or not a number.
    """
    host, sep, port = addr.strip().rpartition(":")
    if not sep:
        raise ValueError(f"Invalid listen address {addr!r}: expected host:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port_number = int(port)
    except ValueError:
        raise ValueError(f"Invalid port in listen address {addr!r}") from None
    return host or "0.0.0.0", port_number


def _split_keys(value: str) -> List[str]:
    return [key.strip() for key in value.split(",") if key.strip()]


@dataclass
class ServerConfig:
    """
    Configuration for the GWS server.

    NETWORK      host, port, backlog, buffer_size
    TIMEOUTS     read_timeout, write_timeout, keep_alive_timeout
    LIMITS       max_request_size, max_header_bytes
    THREADING    min_workers, max_workers, queue_size
    CONTENT      static_dir, template_dir
    SESSIONS     session_keys, csrf_key, cookie_secure
    LOGGING      log_level, log_format
    """

    host: str = "localhost"
    port: int = 8080
    backlog: int = 128
    buffer_size: int = 8192

    read_timeout: float = 15.0
    """Seconds allowed to receive a complete request (headers and body)."""

    write_timeout: float = 20.0
    """Seconds allowed for each send while writing a response."""

    keep_alive: bool = True
    keep_alive_timeout: float = 5.0
    """Idle seconds a persistent connection may wait for its next request."""

    max_request_size: int = 10 * 1024 * 1024  # 10 MB
    max_header_bytes: int = 1 << 20           # 1 MiB, larger header blocks get 431

    min_workers: int = 4
    max_workers: int = 16
    queue_size: int = 128
    """Accepted connections waiting for a worker; beyond this clients get 503."""

    static_dir: str = "static"
    template_dir: Optional[str] = None
    """None selects the templates packaged with gws."""

    session_keys: List[str] = field(default_factory=list, repr=False)
    csrf_key: str = field(default="", repr=False)
    cookie_secure: bool = True
    """False drops the Secure cookie attribute, for plain-HTTP development only."""

    log_level: str = "INFO"
    log_format: str = "text"
    server_name: str = "GWS/1.0"

    @property
    def listen(self) -> str:
        return f"{self.host}:{self.port}"

    @listen.setter
    def listen(self, addr: str) -> None:
        self.host, self.port = parse_listen_addr(addr)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """
        Create configuration from environment variables.

            GWS_LISTEN_ADDR       host:port (default: localhost:8080);
                                  GWSLISTENADDR is read when it is unset
            GWS_WORKERS           max worker threads (default: 16)
            GWS_STATIC_DIR        static files directory (default: static)
            GWS_TEMPLATE_DIR      page templates (default: packaged)
            GWS_LOG_LEVEL         DEBUG, INFO, ... (default: INFO)
            GWS_LOG_FORMAT        text or json access log (default: text)
            GWS_SESSION_KEYS      comma-separated Fernet keys
            GWS_CSRF_KEY          CSRF signing secret
            GWS_INSECURE_COOKIES  1 to drop the Secure cookie attribute
        """
        env = os.environ if environ is None else environ
        listen = env.get("GWS_LISTEN_ADDR") or env.get("GWSLISTENADDR") or DEFAULT_LISTEN_ADDR
        host, port = parse_listen_addr(listen)
        config = cls(
            host=host,
            port=port,
            static_dir=env.get("GWS_STATIC_DIR", "static"),
            template_dir=env.get("GWS_TEMPLATE_DIR") or None,
            session_keys=_split_keys(env.get("GWS_SESSION_KEYS", "")),
            csrf_key=env.get("GWS_CSRF_KEY", ""),
            cookie_secure=env.get("GWS_INSECURE_COOKIES", "").lower() not in _TRUE_VALUES,
            log_level=env.get("GWS_LOG_LEVEL", "INFO").upper(),
            log_format=env.get("GWS_LOG_FORMAT", "text"),
        )
        if "GWS_WORKERS" in env:
            config.max_workers = int(env["GWS_WORKERS"])
            config.min_workers = min(config.min_workers, config.max_workers)
        return config

    def validate(self) -> None:
        """Check network, limit and threading settings. Raises ValueError."""
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535 (0 picks a free port).")
        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")
        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")
        if self.queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")
        for name in ("read_timeout", "write_timeout", "keep_alive_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.max_header_bytes < 1024:
            raise ValueError("max_header_bytes must be >= 1024")
        if self.log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', not {self.log_format!r}")

    def validate_secrets(self) -> None:
        """Check that session and CSRF secrets were supplied. Raises ValueError."""
        if not self.session_keys:
            raise ValueError(
                "No session key configured: set GWS_SESSION_KEYS "
                "(generate one with `python -m gws --generate-key`)"
            )
        if not self.csrf_key:
            raise ValueError("No CSRF key configured: set GWS_CSRF_KEY")
