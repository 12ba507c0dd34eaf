"""Tests for SQLite bookmark store."""

import asyncio
import sqlite3
from pathlib import Path
from typing import Iterator

import pytest

from bookmark_sync.connectors.sqlite import SQLiteBookmarkStore
from bookmark_sync.core.tree import BookmarkNode, BookmarkStoreError, PermanentFolder


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "bookmarks.db"


@pytest.fixture
def store(db_path: Path) -> Iterator[SQLiteBookmarkStore]:
    with SQLiteBookmarkStore(db_path) as store:
        yield store


def folder_id(store: SQLiteBookmarkStore, folder: PermanentFolder) -> str:
    root = asyncio.run(store.get_tree())
    return next(child.id for child in root.children if child.permanent_folder is folder)


class TestSQLiteBookmarkStore:
    """Tests for SQLiteBookmarkStore class."""

    def test_connection(self, store: SQLiteBookmarkStore, db_path: Path) -> None:
        """Test database connection."""
        assert store.path == db_path

    def test_new_store_has_permanent_folders(self, store: SQLiteBookmarkStore) -> None:
        """The root and both permanent containers exist on first open."""
        root = asyncio.run(store.get_tree())

        assert root.parent_id is None
        assert root.permanent_folder is None
        assert [child.permanent_folder for child in root.children] == [
            PermanentFolder.BOOKMARKS_BAR,
            PermanentFolder.OTHER,
        ]
        assert [child.title for child in root.children] == ["Bookmarks Bar", "Other Bookmarks"]

    def test_reopen_keeps_single_root(self, db_path: Path) -> None:
        """Reopening does not create another set of roots."""
        with SQLiteBookmarkStore(db_path) as store:
            asyncio.run(store.get_tree())
        with SQLiteBookmarkStore(db_path) as store:
            root = asyncio.run(store.get_tree())
        assert len(root.children) == 2

    def test_create_and_get(self, store: SQLiteBookmarkStore) -> None:
        """Test creating folders and bookmarks."""
        bar = folder_id(store, PermanentFolder.BOOKMARKS_BAR)
        folder = asyncio.run(store.create(bar, "Python"))
        leaf = asyncio.run(store.create(folder.id, "Docs", "https://docs.python.org"))

        assert folder.is_folder
        assert not leaf.is_folder
        assert leaf.parent_id == folder.id
        assert leaf.date_modified is not None

        children = asyncio.run(store.get_children(folder.id))
        assert [child.title for child in children] == ["Docs"]
        assert asyncio.run(store.get_node(leaf.id)) == leaf

    def test_create_under_bookmark_fails(self, store: SQLiteBookmarkStore) -> None:
        bar = folder_id(store, PermanentFolder.BOOKMARKS_BAR)
        leaf = asyncio.run(store.create(bar, "Docs", "https://docs.python.org"))
        with pytest.raises(BookmarkStoreError):
            asyncio.run(store.create(leaf.id, "Child"))

    def test_create_fails_when_node_cannot_be_read_back(self, db_path: Path) -> None:
        class UnreadableStore(SQLiteBookmarkStore):
            async def get_node(self, node_id: str) -> BookmarkNode | None:
                return None

        with UnreadableStore(db_path) as store:
            root = asyncio.run(store.get_tree())
            with pytest.raises(BookmarkStoreError, match="could not be read back"):
                asyncio.run(store.create(root.id, "Lost"))

    def test_search(self, store: SQLiteBookmarkStore) -> None:
        """Folder search never returns permanent containers."""
        bar = folder_id(store, PermanentFolder.BOOKMARKS_BAR)
        folder = asyncio.run(store.create(bar, "Other Bookmarks"))
        leaf = asyncio.run(store.create(bar, "Docs", "https://docs.python.org"))

        assert [n.id for n in asyncio.run(store.search("Other Bookmarks"))] == [folder.id]
        assert [n.id for n in asyncio.run(store.search("Docs", "https://docs.python.org"))] == [leaf.id]
        assert asyncio.run(store.search("Docs")) == []

    def test_move(self, store: SQLiteBookmarkStore) -> None:
        bar = folder_id(store, PermanentFolder.BOOKMARKS_BAR)
        a = asyncio.run(store.create(bar, "A"))
        b = asyncio.run(store.create(bar, "B"))
        leaf = asyncio.run(store.create(a.id, "Docs", "https://docs.python.org"))

        asyncio.run(store.move(leaf.id, b.id))

        assert asyncio.run(store.get_children(a.id)) == []
        assert [n.id for n in asyncio.run(store.get_children(b.id))] == [leaf.id]

    def test_move_into_own_subtree_fails(self, store: SQLiteBookmarkStore) -> None:
        bar = folder_id(store, PermanentFolder.BOOKMARKS_BAR)
        outer = asyncio.run(store.create(bar, "Outer"))
        inner = asyncio.run(store.create(outer.id, "Inner"))
        with pytest.raises(BookmarkStoreError):
            asyncio.run(store.move(outer.id, inner.id))

    def test_remove_non_empty_folder_fails(self, store: SQLiteBookmarkStore) -> None:
        bar = folder_id(store, PermanentFolder.BOOKMARKS_BAR)
        folder = asyncio.run(store.create(bar, "Python"))
        asyncio.run(store.create(folder.id, "Docs", "https://docs.python.org"))
        with pytest.raises(BookmarkStoreError):
            asyncio.run(store.remove(folder.id))

    def test_remove_tree(self, store: SQLiteBookmarkStore) -> None:
        bar = folder_id(store, PermanentFolder.BOOKMARKS_BAR)
        folder = asyncio.run(store.create(bar, "Python"))
        nested = asyncio.run(store.create(folder.id, "Nested"))
        asyncio.run(store.create(nested.id, "Docs", "https://docs.python.org"))

        asyncio.run(store.remove_tree(folder.id))

        root = asyncio.run(store.get_tree())
        assert [n.title for n in root.walk() if n.folder_type is None and n is not root] == []

    def test_permanent_nodes_are_protected(self, store: SQLiteBookmarkStore) -> None:
        bar = folder_id(store, PermanentFolder.BOOKMARKS_BAR)
        other = folder_id(store, PermanentFolder.OTHER)
        with pytest.raises(BookmarkStoreError):
            asyncio.run(store.remove_tree(bar))
        with pytest.raises(BookmarkStoreError):
            asyncio.run(store.move(other, bar))

    def test_data_version_tracks_other_connections(self, store: SQLiteBookmarkStore, db_path: Path) -> None:
        """Writes from another connection change data_version."""
        before = store.data_version()
        other = folder_id(store, PermanentFolder.OTHER)

        conn = sqlite3.connect(db_path)
        conn.execute(
            "INSERT INTO nodes (parent_id, title, url, date_added) VALUES (?, 'X', 'http://x.test', 1)",
            (other,),
        )
        conn.commit()
        conn.close()

        assert store.data_version() != before
