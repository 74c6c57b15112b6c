"""
Command-line entry point: `python -m gws` or the `gws` script.

    python -m gws                         # localhost:8080 or $GWS_LISTEN_ADDR
    python -m gws --listen :9099          # all interfaces, port 9099
    python -m gws --static ./public       # another static directory
    python -m gws --generate-key          # print a fresh session key

Command-line flags override GWS_* environment variables, which override
the defaults. Startup errors (missing secrets, template syntax errors, a
port already in use) are logged and exit with status 1.
"""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .app import create_app
from .config import ServerConfig
from .server import configure_logging
from .session import generate_key
from .templates import TemplateLoadError


logger = logging.getLogger("gws")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gws",
        description="GWS: a small HTTP/1.1 web server with cookie sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  GWS_LISTEN_ADDR       listen address (default: localhost:8080)
  GWSLISTENADDR         older name, read when GWS_LISTEN_ADDR is unset
  GWS_SESSION_KEYS      comma-separated session keys (required)
  GWS_CSRF_KEY          CSRF signing secret (required)
  GWS_INSECURE_COOKIES  1 to send cookies over plain HTTP
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────
    parser.add_argument(
        "--listen", "-L",
        default=None,
        help="host:port to listen on, e.g. :9099 for all interfaces",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="port to listen on, keeping the configured host",
    )
    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=None,
        help="maximum worker threads (default: 16)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # CONTENT
    # ─────────────────────────────────────────────────────────────────────
    parser.add_argument("--static", "-s", default=None, help="static files directory")
    parser.add_argument("--templates", "-t", default=None, help="page template directory")

    # ─────────────────────────────────────────────────────────────────────
    # SESSIONS AND LOGGING
    # ─────────────────────────────────────────────────────────────────────
    parser.add_argument(
        "--insecure-cookies",
        action="store_true",
        help="omit the Secure cookie attribute (plain-HTTP development only)",
    )
    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=None,
        help="access log format (default: text)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # META
    # ─────────────────────────────────────────────────────────────────────
    parser.add_argument(
        "--generate-key",
        action="store_true",
        help="print a new random session key and exit",
    )
    parser.add_argument("--version", "-v", action="version", version=f"GWS {__version__}")
    return parser


def load_config(args: argparse.Namespace) -> ServerConfig:
    """Environment first, then whatever was given on the command line."""
    config = ServerConfig.from_env()
    if args.listen:
        config.listen = args.listen
    if args.port is not None:
        config.port = args.port
    if args.workers is not None:
        config.max_workers = args.workers
        config.min_workers = min(config.min_workers, args.workers)
    if args.static:
        config.static_dir = args.static
    if args.templates:
        config.template_dir = args.templates
    if args.insecure_cookies:
        config.cookie_secure = False
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.generate_key:
        print(generate_key())
        return 0

    try:
        config = load_config(args)
    except ValueError as e:
        configure_logging()
        logger.error(f"Invalid configuration: {e}")
        return 1

    configure_logging(config.log_level)

    try:
        server = create_app(config)
    except (ValueError, TemplateLoadError) as e:
        logger.error(f"Cannot start: {e}")
        return 1

    if not config.cookie_secure:
        logger.warning("Session cookies are sent without the Secure attribute")

    try:
        server.run()
    except OSError as e:
        logger.error(f"Cannot listen on {config.listen}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
