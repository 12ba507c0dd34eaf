"""
SQLite Bookmark Store.

Local tree store backed by a single SQLite file:
- One ``nodes`` table holding folders and bookmarks
- Root and the two permanent containers created on first open
- ``PRAGMA data_version`` for detecting writes from other processes
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from bookmark_sync.core.models import now_ms
from bookmark_sync.core.tree import BookmarkNode, BookmarkStoreError, PermanentFolder

ROOT_FOLDER_TYPE = "root"

SCHEMA = """
CREATE TABLE IF NOT EXISTS nodes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    parent_id INTEGER REFERENCES nodes(id),
    title TEXT NOT NULL DEFAULT '',
    url TEXT,
    position INTEGER NOT NULL DEFAULT 0,
    date_added INTEGER NOT NULL,
    date_modified INTEGER,
    folder_type TEXT
);
CREATE INDEX IF NOT EXISTS idx_nodes_parent ON nodes(parent_id);
CREATE INDEX IF NOT EXISTS idx_nodes_title ON nodes(title);
"""


class SQLiteBookmarkStore:
    """
    Bookmark tree in a SQLite database.

    Example:
        store = SQLiteBookmarkStore(Path("bookmarks.db"))

        root = await store.get_tree()
        node = await store.create(bar_id, "Python", "https://python.org")
        await store.remove(node.id)
    """

    def __init__(self, path: Path | str) -> None:
        """
        Initialize the store.

        Args:
            path: Path to the SQLite database (created if missing)
        """
        self.path = Path(path)
        self._connection: sqlite3.Connection | None = None

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection, rolling back and wrapping failures."""
        if self._connection is None:
            self._connection = self._create_connection()

        try:
            yield self._connection
        except sqlite3.Error as e:
            self._connection.rollback()
            raise BookmarkStoreError(str(e)) from e

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new database connection and bootstrap the schema."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.executescript(SCHEMA)
        self._ensure_roots(conn)
        return conn

    def _ensure_roots(self, conn: sqlite3.Connection) -> None:
        row = conn.execute(
            "SELECT id FROM nodes WHERE folder_type = ?", (ROOT_FOLDER_TYPE,)
        ).fetchone()
        if row is not None:
            return

        now = now_ms()
        cursor = conn.execute(
            "INSERT INTO nodes (parent_id, title, date_added, folder_type) VALUES (NULL, '', ?, ?)",
            (now, ROOT_FOLDER_TYPE),
        )
        root_id = cursor.lastrowid
        for position, folder in enumerate(PermanentFolder):
            conn.execute(
                """
                INSERT INTO nodes (parent_id, title, position, date_added, folder_type)
                VALUES (?, ?, ?, ?, ?)
                """,
                (root_id, folder.canonical_title, position, now, folder.value),
            )
        conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> "SQLiteBookmarkStore":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # =========================================================================
    # Reads
    # =========================================================================

    @staticmethod
    def _row_to_node(row: sqlite3.Row) -> BookmarkNode:
        folder_type = row["folder_type"]
        return BookmarkNode(
            id=str(row["id"]),
            title=row["title"],
            url=row["url"],
            parent_id=str(row["parent_id"]) if row["parent_id"] is not None else None,
            date_added=row["date_added"],
            date_modified=row["date_modified"],
            folder_type=folder_type if folder_type != ROOT_FOLDER_TYPE else None,
        )

    async def get_tree(self) -> BookmarkNode:
        """Load the full tree, children in position order."""
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM nodes ORDER BY parent_id, position, id"
            ).fetchall()

        nodes: dict[str, BookmarkNode] = {}
        root: BookmarkNode | None = None
        for row in rows:
            node = self._row_to_node(row)
            nodes[node.id] = node
            if row["folder_type"] == ROOT_FOLDER_TYPE:
                root = node

        if root is None:
            raise BookmarkStoreError(f"No root node in {self.path}")

        for row in rows:
            node = nodes[str(row["id"])]
            if node.parent_id is not None and node.parent_id in nodes:
                nodes[node.parent_id].children.append(node)

        return root

    async def get_node(self, node_id: str) -> BookmarkNode | None:
        with self.connection() as conn:
            row = conn.execute("SELECT * FROM nodes WHERE id = ?", (node_id,)).fetchone()
        return self._row_to_node(row) if row else None

    async def get_children(self, node_id: str) -> list[BookmarkNode]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM nodes WHERE parent_id = ? ORDER BY position, id",
                (node_id,),
            ).fetchall()
        return [self._row_to_node(row) for row in rows]

    async def search(self, title: str, url: str | None = None) -> list[BookmarkNode]:
        """
        Exact match on title and url.

        ``url=None`` matches user folders only; the root and permanent
        containers are never returned.
        """
        with self.connection() as conn:
            if url is None:
                rows = conn.execute(
                    """
                    SELECT * FROM nodes
                    WHERE title = ? AND url IS NULL AND folder_type IS NULL
                    ORDER BY id
                    """,
                    (title,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM nodes WHERE title = ? AND url = ? ORDER BY id",
                    (title, url),
                ).fetchall()
        return [self._row_to_node(row) for row in rows]

    def data_version(self) -> int:
        """Changes whenever another connection commits to the database."""
        with self.connection() as conn:
            return conn.execute("PRAGMA data_version").fetchone()[0]

    # =========================================================================
    # Writes
    # =========================================================================

    def _require_folder(self, conn: sqlite3.Connection, folder_id: str) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM nodes WHERE id = ?", (folder_id,)).fetchone()
        if row is None:
            raise BookmarkStoreError(f"Folder not found: {folder_id}")
        if row["url"] is not None:
            raise BookmarkStoreError(f"Not a folder: {folder_id}")
        return row

    def _require_mutable(self, conn: sqlite3.Connection, node_id: str) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM nodes WHERE id = ?", (node_id,)).fetchone()
        if row is None:
            raise BookmarkStoreError(f"Node not found: {node_id}")
        if row["folder_type"] is not None:
            raise BookmarkStoreError(f"Cannot modify permanent node: {row['title'] or node_id}")
        return row

    @staticmethod
    def _next_position(conn: sqlite3.Connection, parent_id: str) -> int:
        row = conn.execute(
            "SELECT COALESCE(MAX(position) + 1, 0) AS next FROM nodes WHERE parent_id = ?",
            (parent_id,),
        ).fetchone()
        return row["next"]

    async def create(
        self,
        parent_id: str,
        title: str,
        url: str | None = None,
    ) -> BookmarkNode:
        """Append a bookmark (url set) or folder to ``parent_id``."""
        with self.connection() as conn:
            self._require_folder(conn, parent_id)
            now = now_ms()
            cursor = conn.execute(
                """
                INSERT INTO nodes (parent_id, title, url, position, date_added, date_modified)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (parent_id, title, url, self._next_position(conn, parent_id), now, now),
            )
            conn.commit()
            node_id = cursor.lastrowid

        node = await self.get_node(str(node_id))
        if node is None:
            raise BookmarkStoreError(f"Created node {node_id} could not be read back")
        return node

    async def move(self, node_id: str, parent_id: str) -> None:
        """Reparent a node to the end of ``parent_id``; bumps its date_modified."""
        with self.connection() as conn:
            self._require_mutable(conn, node_id)
            self._require_folder(conn, parent_id)

            # A folder cannot move into its own subtree
            cycle = conn.execute(
                """
                WITH RECURSIVE ancestors(id, parent_id) AS (
                    SELECT id, parent_id FROM nodes WHERE id = ?
                    UNION ALL
                    SELECT n.id, n.parent_id FROM nodes n
                    JOIN ancestors a ON n.id = a.parent_id
                )
                SELECT 1 FROM ancestors WHERE id = ?
                """,
                (parent_id, node_id),
            ).fetchone()
            if cycle:
                raise BookmarkStoreError(f"Cannot move {node_id} into its own subtree")

            conn.execute(
                "UPDATE nodes SET parent_id = ?, position = ?, date_modified = ? WHERE id = ?",
                (parent_id, self._next_position(conn, parent_id), now_ms(), node_id),
            )
            conn.commit()

    async def remove(self, node_id: str) -> None:
        """Remove a bookmark or an empty folder."""
        with self.connection() as conn:
            self._require_mutable(conn, node_id)
            child = conn.execute(
                "SELECT 1 FROM nodes WHERE parent_id = ? LIMIT 1", (node_id,)
            ).fetchone()
            if child:
                raise BookmarkStoreError(f"Folder is not empty: {node_id}")
            conn.execute("DELETE FROM nodes WHERE id = ?", (node_id,))
            conn.commit()

    async def remove_tree(self, node_id: str) -> None:
        """Remove a node and its whole subtree."""
        with self.connection() as conn:
            self._require_mutable(conn, node_id)
            conn.execute(
                """
                WITH RECURSIVE subtree(id) AS (
                    SELECT id FROM nodes WHERE id = ?
                    UNION ALL
                    SELECT n.id FROM nodes n JOIN subtree s ON n.parent_id = s.id
                )
                DELETE FROM nodes WHERE id IN (SELECT id FROM subtree)
                """,
                (node_id,),
            )
            conn.commit()
