"""
=============================================================================
MIME TYPE DETECTION
=============================================================================

Maps static asset file extensions to the Content-Type the browser needs to
interpret them. Paired with `X-Content-Type-Options: nosniff`, a wrong type
here means a stylesheet or script the browser refuses to use, so the table
covers what a small site ships under static/: markup, styles, scripts,
images, fonts and a few document formats.

=============================================================================
"""

from pathlib import Path
from typing import Optional, Union


MIME_TYPES = {
    # Text
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "text/javascript",
    ".mjs": "text/javascript",
    ".txt": "text/plain",
    ".csv": "text/csv",
    ".md": "text/markdown",
    ".json": "application/json",
    ".map": "application/json",
    ".xml": "application/xml",
    ".webmanifest": "application/manifest+json",

    # Images
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".webp": "image/webp",
    ".avif": "image/avif",

    # Fonts
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",

    # Documents / archives
    ".pdf": "application/pdf",
    ".zip": "application/zip",
    ".gz": "application/gzip",
    ".wasm": "application/wasm",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

# application/* and image/* types that are really text and take a charset
_TEXTUAL_TYPES = {
    "application/json",
    "application/xml",
    "application/manifest+json",
    "image/svg+xml",
}


def get_mime_type(path: Union[str, Path], default: Optional[str] = None) -> str:
    """
    Look up the MIME type for a file name by extension (case-insensitive).

        >>> get_mime_type("site.CSS")
        'text/css'
        >>> get_mime_type("blob.xyz")
        'application/octet-stream'
    """
    extension = Path(path).suffix.lower()
    return MIME_TYPES.get(extension, default or DEFAULT_MIME_TYPE)


def is_text_type(mime_type: str) -> bool:
    return mime_type.startswith("text/") or mime_type in _TEXTUAL_TYPES


def get_content_type(path: Union[str, Path], charset: str = "utf-8") -> str:
    """Content-Type header value for a file, with a charset for text types."""
    mime_type = get_mime_type(path)
    if is_text_type(mime_type):
        return f"{mime_type}; charset={charset}"
    return mime_type
