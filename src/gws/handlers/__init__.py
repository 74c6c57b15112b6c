"""
Request handlers that are not pages: files served from disk.
"""

from .static import StaticFileHandler

__all__ = [
    "StaticFileHandler",
]
