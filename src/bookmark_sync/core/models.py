"""
Data model shared by the sync components.

Provides:
- Item / ItemMap: one bookmark or container, flattened and keyed
- Tombstone: record of a local deletion
- DeviceClock: per-replica last-sync entry inside the remote document
- RemoteDocument: the shared JSON document and its codec
- Action: the closed set of merge outcomes
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from bookmark_sync.core.identity import item_key

DOCUMENT_VERSION = 3


class ParseError(Exception):
    """Raised when the remote document cannot be decoded."""


class Action(str, Enum):
    """Outcome of merging one key."""

    CREATE = "create"
    DELETE = "delete"
    KEEP = "keep"
    UPLOAD = "upload"


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Item:
    """A flattened bookmark (url set) or container (url None)."""

    key: str
    title: str
    url: str | None = None
    date_added: int = 0
    date_modified: int = 0
    parent_title: str | None = None
    deleted: bool = False

    @property
    def is_container(self) -> bool:
        return not self.url

    def with_changes(self, **changes: Any) -> "Item":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Serialize in the remote document's entry shape."""
        data: dict[str, Any] = {"id": self.key, "title": self.title}
        if self.url:
            data["url"] = self.url
        data["dateAdded"] = self.date_added
        data["dateModified"] = self.date_modified
        if self.parent_title is not None:
            data["parentTitle"] = self.parent_title
        data["deleted"] = self.deleted
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Item":
        """Create from a remote document entry."""
        if not isinstance(data, dict):
            raise ParseError(f"Bookmark entry must be an object, got {type(data).__name__}")

        title = str(data.get("title") or "")
        url = data.get("url") or None
        parent_title = data.get("parentTitle")
        key = data.get("id") or item_key(url, title, parent_title)
        date_added = _as_int(data.get("dateAdded"))

        return cls(
            key=str(key),
            title=title,
            url=url,
            date_added=date_added,
            date_modified=_as_int(data.get("dateModified"), date_added),
            parent_title=parent_title,
            deleted=bool(data.get("deleted", False)),
        )


# key -> Item, one per side per cycle
ItemMap = dict[str, Item]


@dataclass(frozen=True)
class Tombstone:
    """A local deletion, kept until it expires."""

    key: str
    title: str
    deleted_at: int
    url: str | None = None
    parent_title: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"title": self.title}
        if self.url:
            data["url"] = self.url
        if self.parent_title is not None:
            data["parentTitle"] = self.parent_title
        data["deletedAt"] = self.deleted_at
        return data

    @classmethod
    def from_dict(cls, key: str, data: dict[str, Any]) -> "Tombstone":
        if not isinstance(data, dict):
            raise ParseError(f"Tombstone {key} must be an object")
        return cls(
            key=key,
            title=str(data.get("title") or ""),
            url=data.get("url") or None,
            parent_title=data.get("parentTitle"),
            deleted_at=_as_int(data.get("deletedAt")),
        )

    @classmethod
    def for_item(cls, item: Item, deleted_at: int) -> "Tombstone":
        return cls(
            key=item.key,
            title=item.title,
            url=item.url,
            parent_title=item.parent_title,
            deleted_at=deleted_at,
        )


@dataclass
class DeviceClock:
    """Last completed sync of one replica, as stored in the document."""

    name: str
    last_sync: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "lastSync": self.last_sync}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeviceClock":
        if not isinstance(data, dict):
            raise ParseError("Device entry must be an object")
        return cls(name=str(data.get("name") or ""), last_sync=_as_int(data.get("lastSync")))


@dataclass
class RemoteDocument:
    """
    The single shared document, replaced wholesale each cycle.

    Example:
        doc = RemoteDocument.parse(content)
        remote_items = doc.items
        content = doc.to_json()
    """

    version: int = 0
    last_sync: int = 0
    last_sync_by: str | None = None
    devices: dict[str, DeviceClock] = field(default_factory=dict)
    items: list[Item] = field(default_factory=list)
    tombstones: dict[str, Tombstone] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "RemoteDocument":
        """An absent document: version 0, nothing in it."""
        return cls()

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "lastSync": self.last_sync,
            "lastSyncBy": self.last_sync_by,
            "devices": {
                replica_id: clock.to_dict() for replica_id, clock in self.devices.items()
            },
            "bookmarks": [item.to_dict() for item in self.items],
            "deletedBookmarks": {
                key: tombstone.to_dict() for key, tombstone in self.tombstones.items()
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RemoteDocument":
        if not isinstance(data, dict):
            raise ParseError("Document root must be an object")

        bookmarks = data.get("bookmarks") or []
        if not isinstance(bookmarks, list):
            raise ParseError("'bookmarks' must be a list")

        devices = data.get("devices") or {}
        deleted = data.get("deletedBookmarks") or {}
        if not isinstance(devices, dict) or not isinstance(deleted, dict):
            raise ParseError("'devices' and 'deletedBookmarks' must be objects")

        return cls(
            version=_as_int(data.get("version")),
            last_sync=_as_int(data.get("lastSync")),
            last_sync_by=data.get("lastSyncBy"),
            devices={
                replica_id: DeviceClock.from_dict(entry)
                for replica_id, entry in devices.items()
            },
            items=[Item.from_dict(entry) for entry in bookmarks],
            tombstones={
                key: Tombstone.from_dict(key, entry) for key, entry in deleted.items()
            },
        )

    @classmethod
    def parse(cls, content: str | None) -> "RemoteDocument":
        """
        Decode document content.

        Empty or missing content is an empty document. Anything that is
        not a well-formed document raises ParseError.
        """
        if not content or not content.strip():
            return cls.empty()

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ParseError(f"Document is not valid JSON: {e}") from e

        try:
            return cls.from_dict(data)
        except (TypeError, ValueError, AttributeError, OverflowError) as e:
            raise ParseError(f"Document has an unexpected shape: {e}") from e


def _as_int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    return int(value)
