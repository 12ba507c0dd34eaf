"""
Local bookmark tree contract.

The sync core never talks to a concrete store directly. It consumes the
``BookmarkStore`` protocol below; ``bookmark_sync.connectors.sqlite``
provides the implementation used by the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Protocol


class BookmarkStoreError(Exception):
    """Raised by a store when a tree operation fails."""


class PermanentFolder(str, Enum):
    """
    The two permanent top-level containers.

    They are recognized by structural role (``BookmarkNode.folder_type``),
    never by display title, and are attributed a canonical parent title
    so every replica names them the same way.
    """

    BOOKMARKS_BAR = "bookmarks_bar"
    OTHER = "other"

    @property
    def canonical_title(self) -> str:
        return CANONICAL_TITLES[self]

    @classmethod
    def for_title(cls, title: str | None) -> "PermanentFolder | None":
        for folder, canonical in CANONICAL_TITLES.items():
            if title == canonical:
                return folder
        return None


CANONICAL_TITLES: dict[PermanentFolder, str] = {
    PermanentFolder.BOOKMARKS_BAR: "Bookmarks Bar",
    PermanentFolder.OTHER: "Other Bookmarks",
}


@dataclass
class BookmarkNode:
    """A node of the local tree, as returned by a store."""

    id: str
    title: str
    url: str | None = None
    parent_id: str | None = None
    date_added: int = 0
    date_modified: int | None = None
    folder_type: str | None = None
    children: list["BookmarkNode"] = field(default_factory=list)

    @property
    def is_folder(self) -> bool:
        return self.url is None

    @property
    def permanent_folder(self) -> PermanentFolder | None:
        if self.folder_type is None:
            return None
        try:
            return PermanentFolder(self.folder_type)
        except ValueError:
            return None

    def walk(self) -> Iterator["BookmarkNode"]:
        """Depth-first, pre-order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, node_id: str) -> "BookmarkNode | None":
        for node in self.walk():
            if node.id == node_id:
                return node
        return None


class BookmarkStore(Protocol):
    """Operations the sync core needs from the local tree."""

    async def get_tree(self) -> BookmarkNode:
        """Return the root node with all descendants attached."""
        ...

    async def get_node(self, node_id: str) -> BookmarkNode | None:
        ...

    async def get_children(self, node_id: str) -> list[BookmarkNode]:
        ...

    async def search(self, title: str, url: str | None = None) -> list[BookmarkNode]:
        """Exact match on title and url; ``url=None`` matches folders only."""
        ...

    async def create(
        self,
        parent_id: str,
        title: str,
        url: str | None = None,
    ) -> BookmarkNode:
        ...

    async def move(self, node_id: str, parent_id: str) -> None:
        ...

    async def remove(self, node_id: str) -> None:
        ...

    async def remove_tree(self, node_id: str) -> None:
        ...
