"""Tests for applying merge decisions to the local tree."""

import asyncio
from pathlib import Path
from typing import Iterator

import pytest

from bookmark_sync.connectors.sqlite import SQLiteBookmarkStore
from bookmark_sync.core.apply import ApplyEngine, FolderResolver, order_creates
from bookmark_sync.core.identity import item_key
from bookmark_sync.core.merge import MergeDecision, MergeEngine
from bookmark_sync.core.models import Action, Item
from bookmark_sync.core.snapshot import build_local
from bookmark_sync.core.state import StateManager
from bookmark_sync.core.tombstones import TOMBSTONE_TTL_MS, TombstoneStore
from bookmark_sync.core.tree import BookmarkNode, BookmarkStoreError, PermanentFolder

NOW = TOMBSTONE_TTL_MS * 10


@pytest.fixture
def store(tmp_path: Path) -> Iterator[SQLiteBookmarkStore]:
    with SQLiteBookmarkStore(tmp_path / "bookmarks.db") as store:
        yield store


@pytest.fixture
def tombstones(tmp_path: Path) -> TombstoneStore:
    return TombstoneStore(StateManager(tmp_path / "state.json"), clock=lambda: NOW)


@pytest.fixture
def engine(store: SQLiteBookmarkStore, tombstones: TombstoneStore) -> ApplyEngine:
    return ApplyEngine(store, tombstones, clock=lambda: NOW)


def permanent_id(store: SQLiteBookmarkStore, folder: PermanentFolder) -> str:
    root = asyncio.run(store.get_tree())
    return next(child.id for child in root.children if child.permanent_folder is folder)


def make_item(title: str, url: str | None = None, parent: str | None = None, **fields: object) -> Item:
    return Item(key=item_key(url, title, parent), title=title, url=url, parent_title=parent, **fields)


def find_titled(root: BookmarkNode, title: str) -> list[BookmarkNode]:
    return [node for node in root.walk() if node.title == title]


class TestApplyCreates:
    """Test CREATE decisions."""

    def test_remote_leaf_is_created(self, store: SQLiteBookmarkStore, engine: ApplyEngine) -> None:
        """Local empty, remote has X: one create, X staged live."""
        x = make_item("X", "http://x.test", date_modified=5)
        decisions = MergeEngine().merge({}, {x.key: x}, {}, my_last_sync=0)

        result = asyncio.run(engine.apply(decisions, {x.key: x}))

        assert result.created_count == 1
        assert result.errors == []
        root = asyncio.run(store.get_tree())
        other = next(c for c in root.children if c.permanent_folder is PermanentFolder.OTHER)
        assert [child.url for child in other.children] == ["http://x.test"]
        assert [(i.key, i.deleted) for i in result.items] == [(x.key, False)]

    def test_nested_containers_created_parent_first(
        self, store: SQLiteBookmarkStore, engine: ApplyEngine
    ) -> None:
        child = make_item("Papers", parent="Research")
        parent = make_item("Research", parent="Bookmarks Bar")
        paper = make_item("Paper", "http://paper.test", parent="Papers")
        decisions = {
            i.key: MergeDecision(i.key, Action.CREATE, i) for i in (paper, child, parent)
        }

        result = asyncio.run(engine.apply(decisions))

        assert result.created_count == 3
        local = build_local(asyncio.run(store.get_tree()))
        assert set(local) == {child.key, parent.key, paper.key}
        assert local[paper.key].parent_title == "Papers"
        assert local[parent.key].parent_title == "Bookmarks Bar"

    def test_missing_parent_created_and_staged(
        self, store: SQLiteBookmarkStore, engine: ApplyEngine, tombstones: TombstoneStore
    ) -> None:
        """A container whose parent is gone keeps its key on the next snapshot."""
        work = make_item("Work", parent="Proj")
        proj_key = item_key(None, "Proj", "Other Bookmarks")
        tombstones.record(make_item("Proj", parent="Other Bookmarks"))

        result = asyncio.run(engine.apply({work.key: MergeDecision(work.key, Action.CREATE, work)}))

        assert result.created_count == 1
        local = build_local(asyncio.run(store.get_tree()))
        assert set(local) == {work.key, proj_key}
        assert {(i.key, i.deleted) for i in result.items} == {(work.key, False), (proj_key, False)}
        assert tombstones.get(proj_key) is None

    def test_top_level_container_keeps_its_key(
        self, store: SQLiteBookmarkStore, engine: ApplyEngine
    ) -> None:
        work = make_item("Work")
        task = make_item("Task", "http://task.test", parent="Work")
        decisions = {i.key: MergeDecision(i.key, Action.CREATE, i) for i in (task, work)}

        result = asyncio.run(engine.apply(decisions))

        assert result.created_count == 2
        root = asyncio.run(store.get_tree())
        assert [n.parent_id for n in find_titled(root, "Work")] == [root.id]
        assert set(build_local(root)) == {work.key, task.key}

    def test_create_clears_tombstone(self, engine: ApplyEngine, tombstones: TombstoneStore) -> None:
        x = make_item("X", "http://x.test")
        tombstones.record(x)
        asyncio.run(engine.apply({x.key: MergeDecision(x.key, Action.CREATE, x, revived=True)}))
        assert tombstones.get(x.key) is None

    def test_one_failure_does_not_abort_the_rest(self, tmp_path: Path, tombstones: TombstoneStore) -> None:
        class FailingStore(SQLiteBookmarkStore):
            async def create(self, parent_id: str, title: str, url: str | None = None) -> BookmarkNode:
                if title == "Broken":
                    raise BookmarkStoreError("disk full")
                return await super().create(parent_id, title, url)

        with FailingStore(tmp_path / "failing.db") as store:
            engine = ApplyEngine(store, tombstones, clock=lambda: NOW)
            broken = make_item("Broken", "http://broken.test")
            fine = make_item("Fine", "http://fine.test")
            decisions = {
                i.key: MergeDecision(i.key, Action.CREATE, i) for i in (broken, fine)
            }

            result = asyncio.run(engine.apply(decisions))

        assert result.created_count == 1
        assert len(result.errors) == 1
        assert result.errors[0].key == broken.key
        assert result.errors[0].action is Action.CREATE


class TestApplyDeletes:
    """Test DELETE decisions."""

    def test_folder_deleted_with_contents(self, store: SQLiteBookmarkStore, engine: ApplyEngine) -> None:
        bar = permanent_id(store, PermanentFolder.BOOKMARKS_BAR)
        folder = asyncio.run(store.create(bar, "Old"))
        asyncio.run(store.create(folder.id, "Inside", "http://inside.test"))
        old = make_item("Old", parent="Bookmarks Bar")

        result = asyncio.run(engine.apply({old.key: MergeDecision(old.key, Action.DELETE, old)}))

        assert result.deleted_count == 1
        root = asyncio.run(store.get_tree())
        assert find_titled(root, "Old") == []
        assert find_titled(root, "Inside") == []
        assert result.items[0].deleted is True
        assert result.items[0].date_modified == NOW

    def test_prefers_candidate_under_expected_parent(
        self, store: SQLiteBookmarkStore, engine: ApplyEngine
    ) -> None:
        bar = permanent_id(store, PermanentFolder.BOOKMARKS_BAR)
        other = permanent_id(store, PermanentFolder.OTHER)
        asyncio.run(store.create(bar, "Dup", "http://dup.test"))
        asyncio.run(store.create(other, "Dup", "http://dup.test"))
        target = make_item("Dup", "http://dup.test", parent="Other Bookmarks")

        asyncio.run(engine.apply({target.key: MergeDecision(target.key, Action.DELETE, target)}))

        remaining = find_titled(asyncio.run(store.get_tree()), "Dup")
        assert [node.parent_id for node in remaining] == [bar]

    def test_missing_node_is_not_counted(self, engine: ApplyEngine) -> None:
        gone = make_item("Gone", "http://gone.test")
        result = asyncio.run(engine.apply({gone.key: MergeDecision(gone.key, Action.DELETE, gone)}))
        assert result.deleted_count == 0
        assert result.errors == []
        assert result.items[0].deleted is True


class TestDedupe:
    """Test duplicate container reconciliation."""

    def test_duplicates_merged_into_first(self, store: SQLiteBookmarkStore, engine: ApplyEngine) -> None:
        """Two 'Research' folders with disjoint children end up as one."""
        bar = permanent_id(store, PermanentFolder.BOOKMARKS_BAR)
        first = asyncio.run(store.create(bar, "Research"))
        second = asyncio.run(store.create(bar, "Research"))
        asyncio.run(store.create(first.id, "A", "http://a.test"))
        asyncio.run(store.create(second.id, "B", "http://b.test"))
        asyncio.run(store.create(second.id, "C", "http://c.test"))

        result = asyncio.run(engine.dedupe_folders())

        assert result.children_moved == 2
        assert result.errors == []
        # Same key, so nothing needs to reach the remote as a deletion
        assert result.removed == []
        root = asyncio.run(store.get_tree())
        folders = find_titled(root, "Research")
        assert [folder.id for folder in folders] == [first.id]
        assert sorted(child.title for child in folders[0].children) == ["A", "B", "C"]

    def test_duplicate_under_other_parent_gets_tombstone(
        self, store: SQLiteBookmarkStore, engine: ApplyEngine, tombstones: TombstoneStore
    ) -> None:
        bar = permanent_id(store, PermanentFolder.BOOKMARKS_BAR)
        other = permanent_id(store, PermanentFolder.OTHER)
        asyncio.run(store.create(bar, "Research"))
        asyncio.run(store.create(other, "Research"))
        removed_key = item_key(None, "Research", "Other Bookmarks")

        result = asyncio.run(engine.dedupe_folders())

        assert result.removed_keys == {removed_key}
        assert tombstones.get(removed_key) is not None

        items = engine.stage({}, {}, result.removed_keys)
        assert items == []
        decisions = {
            removed_key: MergeDecision(
                removed_key, Action.KEEP, make_item("Research", parent="Other Bookmarks")
            )
        }
        staged = engine.stage(decisions, {}, result.removed_keys)
        assert staged[0].deleted is True

    def test_permanent_folders_never_merged(self, store: SQLiteBookmarkStore, engine: ApplyEngine) -> None:
        bar = permanent_id(store, PermanentFolder.BOOKMARKS_BAR)
        asyncio.run(store.create(bar, "Other Bookmarks"))
        result = asyncio.run(engine.dedupe_folders())
        assert result.removed == []
        assert result.children_moved == 0


class TestStage:
    """Test building the outbound item list."""

    def test_recent_remote_deletions_carried_forward(self, engine: ApplyEngine) -> None:
        recent = make_item("Recent", "http://recent.test", deleted=True, date_modified=NOW - 1000)
        expired = make_item(
            "Expired", "http://expired.test", deleted=True, date_modified=NOW - TOMBSTONE_TTL_MS - 1
        )
        live = make_item("Live", "http://live.test")
        remote = {i.key: i for i in (recent, expired, live)}

        items = engine.stage({}, remote)

        assert [item.key for item in items] == [recent.key]

    def test_keep_and_upload_are_live(self, engine: ApplyEngine) -> None:
        keep = make_item("Keep", "http://keep.test")
        upload = make_item("Upload", "http://upload.test")
        decisions = {
            keep.key: MergeDecision(keep.key, Action.KEEP, keep),
            upload.key: MergeDecision(upload.key, Action.UPLOAD, upload),
        }
        assert all(not item.deleted for item in engine.stage(decisions, {}))

    def test_implied_container_overrides_remote_deletion(self, engine: ApplyEngine) -> None:
        """A container created to host a child is published live, not carried as deleted."""
        proj = make_item("Proj", parent="Other Bookmarks", date_modified=5)
        gone = proj.with_changes(deleted=True, date_modified=NOW - 1000)

        items = engine.stage({}, {proj.key: gone}, implied=[proj])

        assert [(i.key, i.deleted, i.date_modified) for i in items] == [(proj.key, False, NOW)]


class TestFolderResolver:
    """Test container resolution."""

    def test_permanent_and_fallback(self, store: SQLiteBookmarkStore) -> None:
        bar = permanent_id(store, PermanentFolder.BOOKMARKS_BAR)
        other = permanent_id(store, PermanentFolder.OTHER)
        resolver = FolderResolver(store)

        assert asyncio.run(resolver.resolve("Bookmarks Bar")) == bar
        assert asyncio.run(resolver.resolve("Other Bookmarks")) == other
        assert asyncio.run(resolver.resolve(None)) == other
        assert resolver.created == []

    def test_missing_parent_created_under_other(self, store: SQLiteBookmarkStore) -> None:
        other = permanent_id(store, PermanentFolder.OTHER)
        resolver = FolderResolver(store)

        folder_id = asyncio.run(resolver.resolve("Proj"))

        node = asyncio.run(store.get_node(folder_id))
        assert node is not None
        assert node.title == "Proj"
        assert node.parent_id == other
        assert [i.key for i in resolver.created] == [item_key(None, "Proj", "Other Bookmarks")]
        assert asyncio.run(resolver.resolve("Proj")) == folder_id
        assert len(resolver.created) == 1

    def test_top_level_container_goes_under_root(self, store: SQLiteBookmarkStore) -> None:
        root = asyncio.run(store.get_tree())
        other = permanent_id(store, PermanentFolder.OTHER)
        resolver = FolderResolver(store)

        assert asyncio.run(resolver.resolve_item(make_item("Work"))) == root.id
        assert asyncio.run(resolver.resolve_item(make_item("Loose", "http://loose.test"))) == other

    def test_user_folder_and_stale_cache(self, store: SQLiteBookmarkStore) -> None:
        bar = permanent_id(store, PermanentFolder.BOOKMARKS_BAR)
        folder = asyncio.run(store.create(bar, "Research"))
        resolver = FolderResolver(store)

        assert asyncio.run(resolver.resolve("Research")) == folder.id

        asyncio.run(store.remove(folder.id))
        replacement = asyncio.run(store.create(bar, "Research"))
        assert asyncio.run(resolver.resolve("Research")) == replacement.id


class TestOrderCreates:
    """Test create ordering."""

    def test_containers_before_leaves_parents_first(self) -> None:
        leaf = make_item("Leaf", "http://leaf.test", parent="Child")
        child = make_item("Child", parent="Parent")
        parent = make_item("Parent", parent="Bookmarks Bar")
        decisions = [MergeDecision(i.key, Action.CREATE, i) for i in (leaf, child, parent)]

        ordered = [d.item.title for d in order_creates(decisions)]

        assert ordered == ["Parent", "Child", "Leaf"]
