"""Local store and remote document connectors for Bookmark Sync."""

from bookmark_sync.connectors.sqlite import SQLiteBookmarkStore
from bookmark_sync.connectors.gist_client import GistClient

__all__ = ["SQLiteBookmarkStore", "GistClient"]
