"""
Apply Engine - executes merge decisions against the local tree.

Handles:
- Duplicate container reconciliation (before any decision is applied)
- Container resolution by title, memoized per cycle
- Create / Delete against the store, one failure never aborting the rest
- Staging of the outbound item list
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping

from bookmark_sync.core.merge import MergeDecision
from bookmark_sync.core.models import Action, Item, ItemMap, now_ms
from bookmark_sync.core.snapshot import node_to_item, parent_title_of
from bookmark_sync.core.tombstones import TOMBSTONE_TTL_MS, TombstoneStore
from bookmark_sync.core.tree import (
    BookmarkNode,
    BookmarkStore,
    BookmarkStoreError,
    PermanentFolder,
)

logger = logging.getLogger(__name__)


class ApplyError(Exception):
    """A single create/delete that could not be applied."""

    def __init__(self, message: str, key: str | None = None, action: Action | None = None) -> None:
        super().__init__(message)
        self.key = key
        self.action = action


@dataclass
class DedupeResult:
    """Outcome of the duplicate container pass."""

    removed: list[Item] = field(default_factory=list)
    children_moved: int = 0
    errors: list[ApplyError] = field(default_factory=list)

    @property
    def removed_keys(self) -> set[str]:
        return {item.key for item in self.removed}


@dataclass
class ApplyResult:
    """Outcome of applying one cycle's decisions."""

    created_count: int = 0
    deleted_count: int = 0
    items: list[Item] = field(default_factory=list)
    errors: list[ApplyError] = field(default_factory=list)


class FolderResolver:
    """
    Maps a parent title to a live container id for one cycle.

    The permanent containers are fixed destinations. A leaf with no parent
    title goes to the "other" container; a container with no parent title
    goes directly under the root, where a snapshot attributes it no parent
    again. A parent title naming no local container gets that container
    created under "other", so the child keeps its key on the next snapshot.
    Cached ids are re-verified before use and re-resolved if the folder
    disappeared.
    """

    def __init__(self, store: BookmarkStore) -> None:
        self.store = store
        self.created: list[Item] = []
        self._cache: dict[str | None, str] = {}
        self._permanent: dict[PermanentFolder, str] = {}
        self._root_id: str | None = None

    async def _load_permanent(self) -> None:
        root = await self.store.get_tree()
        self._root_id = root.id
        for child in root.children:
            folder = child.permanent_folder
            if folder is not None:
                self._permanent[folder] = child.id
        if PermanentFolder.OTHER not in self._permanent:
            raise BookmarkStoreError("Tree has no 'other' permanent container")

    async def root(self) -> str:
        """Id of the root node, the home of top-level containers."""
        root_id = self._root_id
        if root_id is None:
            root_id = (await self.store.get_tree()).id
            self._root_id = root_id
        return root_id

    async def resolve_item(self, item: Item) -> str:
        """Destination container for ``item``."""
        if item.is_container and item.parent_title is None:
            return await self.root()
        return await self.resolve(item.parent_title)

    async def resolve(self, parent_title: str | None) -> str:
        cached = self._cache.get(parent_title)
        if cached is not None:
            if await self.store.get_node(cached) is not None:
                return cached
            logger.debug(f"Container '{parent_title}' vanished mid-cycle, re-resolving")
            del self._cache[parent_title]
            self._permanent.clear()

        if not self._permanent:
            await self._load_permanent()

        folder = PermanentFolder.for_title(parent_title)
        if parent_title is None or folder is not None:
            folder_id = self._permanent.get(
                folder or PermanentFolder.OTHER,
                self._permanent[PermanentFolder.OTHER],
            )
        else:
            matches = await self.store.search(parent_title)
            if matches:
                folder_id = matches[0].id
            else:
                folder_id = await self._create_missing(parent_title)

        self._cache[parent_title] = folder_id
        return folder_id

    async def _create_missing(self, title: str) -> str:
        other = PermanentFolder.OTHER.canonical_title
        node = await self.store.create(self._permanent[PermanentFolder.OTHER], title)
        self.created.append(node_to_item(node, other))
        logger.info(f"Created missing container '{title}' under '{other}'")
        return node.id

    def remember(self, title: str, folder_id: str) -> None:
        self._cache.setdefault(title, folder_id)


def order_creates(decisions: Iterable[MergeDecision]) -> list[MergeDecision]:
    """
    Containers first, parents before children, then leaves.

    Containers whose parent is itself awaiting creation are held back
    until that parent has been placed.
    """
    containers = [d for d in decisions if d.item.is_container]
    leaves = [d for d in decisions if not d.item.is_container]

    ordered: list[MergeDecision] = []
    pending = list(containers)
    while pending:
        waiting_titles = {d.item.title for d in pending}
        ready = [
            d for d in pending
            if d.item.parent_title not in waiting_titles or d.item.parent_title == d.item.title
        ]
        if not ready:
            # Cycle in parent titles; place the rest as-is
            ordered.extend(pending)
            break
        ordered.extend(ready)
        pending = [d for d in pending if d not in ready]

    return ordered + leaves


class ApplyEngine:
    """
    Executes a cycle's decisions against the local tree.

    Example:
        engine = ApplyEngine(store, tombstones)
        dedupe = await engine.dedupe_folders()
        result = await engine.apply(decisions, remote, dedupe)
        document.items = result.items
    """

    def __init__(
        self,
        store: BookmarkStore,
        tombstones: TombstoneStore,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.tombstones = tombstones
        self.clock = clock

    # =========================================================================
    # Duplicate containers
    # =========================================================================

    async def dedupe_folders(self) -> DedupeResult:
        """
        Merge containers that share a title.

        Children of every later duplicate are reparented onto the first
        container seen in depth-first order, then the duplicate is removed.
        A tombstone is recorded for each removed duplicate so the deletion
        reaches the remote document instead of being recreated.
        """
        result = DedupeResult()
        root = await self.store.get_tree()

        first_by_title: dict[str, BookmarkNode] = {}
        duplicates: list[tuple[BookmarkNode, BookmarkNode]] = []
        for node in root.walk():
            if node is root or not node.is_folder or node.permanent_folder is not None:
                continue
            first = first_by_title.setdefault(node.title, node)
            if first is not node:
                duplicates.append((first, node))

        for first, duplicate in duplicates:
            item = node_to_item(duplicate, parent_title_of(root, duplicate))
            keeper_key = node_to_item(first, parent_title_of(root, first)).key
            try:
                for child in await self.store.get_children(duplicate.id):
                    await self.store.move(child.id, first.id)
                    result.children_moved += 1
                await self.store.remove(duplicate.id)
            except BookmarkStoreError as e:
                error = ApplyError(
                    f"Could not merge duplicate container '{duplicate.title}': {e}",
                    key=item.key,
                )
                logger.warning(str(error))
                result.errors.append(error)
                continue

            logger.info(f"Merged duplicate container '{duplicate.title}' into {first.id}")
            if item.key != keeper_key:
                result.removed.append(item)

        if result.removed:
            self.tombstones.record_many(result.removed)

        return result

    # =========================================================================
    # Decisions
    # =========================================================================

    async def apply(
        self,
        decisions: Mapping[str, MergeDecision],
        remote: ItemMap | None = None,
        dedupe: DedupeResult | None = None,
    ) -> ApplyResult:
        """
        Apply decisions locally and stage the outbound item list.

        Args:
            decisions: Output of the merge engine
            remote: Remote snapshot, for carrying forward remote deletions
            dedupe: Result of ``dedupe_folders`` run this cycle

        Returns:
            ApplyResult with counters of completed operations only
        """
        result = ApplyResult()
        removed_keys = dedupe.removed_keys if dedupe else set()
        resolver = FolderResolver(self.store)

        creates = [d for d in decisions.values() if d.action is Action.CREATE]
        deletes = [d for d in decisions.values() if d.action is Action.DELETE]

        for decision in order_creates(creates):
            try:
                await self._create(decision.item, resolver)
            except BookmarkStoreError as e:
                self._skip(result, decision, e)
                continue
            result.created_count += 1

        for decision in deletes:
            try:
                removed = await self._delete(decision.item)
            except BookmarkStoreError as e:
                self._skip(result, decision, e)
                continue
            if removed:
                result.deleted_count += 1

        for item in resolver.created:
            self.tombstones.clear(item.key)
        result.items = self.stage(decisions, remote or {}, removed_keys, resolver.created)
        return result

    def stage(
        self,
        decisions: Mapping[str, MergeDecision],
        remote: ItemMap,
        removed_keys: set[str] | None = None,
        implied: Iterable[Item] = (),
    ) -> list[Item]:
        """
        Build the outbound item list for the remote document.

        ``implied`` holds containers created locally to host a child whose
        parent was missing; they are published as live items.
        """
        removed_keys = removed_keys or set()
        now = self.clock()
        items: list[Item] = []
        staged: set[str] = set(decisions)

        for key, decision in decisions.items():
            if decision.action is Action.DELETE or key in removed_keys:
                items.append(decision.item.with_changes(deleted=True, date_modified=now))
            else:
                items.append(decision.item.with_changes(deleted=False))

        for item in implied:
            if item.key not in staged:
                staged.add(item.key)
                items.append(item.with_changes(deleted=False, date_modified=now))

        # Remote deletions with no local counterpart stay visible until they expire
        for key, item in remote.items():
            if key in staged or not item.deleted:
                continue
            if now - item.date_modified <= TOMBSTONE_TTL_MS:
                items.append(item)

        return items

    def _skip(self, result: ApplyResult, decision: MergeDecision, cause: Exception) -> None:
        error = ApplyError(
            f"{decision.action.value} '{decision.item.title}' failed: {cause}",
            key=decision.key,
            action=decision.action,
        )
        logger.warning(str(error))
        result.errors.append(error)

    async def _create(self, item: Item, resolver: FolderResolver) -> BookmarkNode:
        parent_id = await resolver.resolve_item(item)
        node = await self.store.create(parent_id, item.title, item.url)
        if item.is_container:
            resolver.remember(item.title, node.id)
        self.tombstones.clear(item.key)
        logger.debug(f"Created '{item.title}' under {parent_id}")
        return node

    async def _locate(self, item: Item) -> BookmarkNode | None:
        matches = await self.store.search(item.title, item.url)
        if not matches:
            return None
        if len(matches) == 1:
            return matches[0]

        # Several candidates: prefer the one under the expected parent
        for node in matches:
            if await self._parent_title(node) == item.parent_title:
                return node
        return matches[0]

    async def _parent_title(self, node: BookmarkNode) -> str | None:
        if node.parent_id is None:
            return None
        parent = await self.store.get_node(node.parent_id)
        if parent is None or parent.parent_id is None:
            return None
        permanent = parent.permanent_folder
        return permanent.canonical_title if permanent else parent.title

    async def _delete(self, item: Item) -> bool:
        node = await self._locate(item)
        if node is None:
            return False
        if node.is_folder:
            await self.store.remove_tree(node.id)
        else:
            await self.store.remove(node.id)
        logger.debug(f"Deleted '{item.title}'")
        return True
