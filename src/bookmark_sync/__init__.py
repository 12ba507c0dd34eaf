"""Bookmark Sync - keep bookmark trees consistent across machines via a GitHub Gist."""

__version__ = "1.0.0"
__author__ = "Bookmark Sync Contributors"

from bookmark_sync.config import Settings

__all__ = ["Settings", "__version__"]
