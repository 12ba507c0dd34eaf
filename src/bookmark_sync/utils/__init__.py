"""Utility modules for Bookmark Sync."""

from bookmark_sync.utils.logger import setup_logging

__all__ = ["setup_logging"]
