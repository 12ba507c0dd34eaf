"""
Sync Engine - drives one sync cycle end to end.

Coordinates all components for a cycle:
- Snapshot builder for both sides
- Tombstone store for local deletions
- Merge engine for per-key decisions
- Apply engine for local mutations and the outbound item list
- Remote document store for the single read and write

At most one cycle runs at a time; the engine owns that state.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, Iterable, Protocol

from bookmark_sync.config import ConfigurationError, Settings
from bookmark_sync.connectors.gist_client import RemoteBlob, TransportError, create_gist_client
from bookmark_sync.core.apply import ApplyEngine
from bookmark_sync.core.merge import MergeEngine, count_actions
from bookmark_sync.core.models import (
    DOCUMENT_VERSION,
    Action,
    DeviceClock,
    Item,
    ParseError,
    RemoteDocument,
    Tombstone,
    now_ms,
)
from bookmark_sync.core.snapshot import build_local, build_remote
from bookmark_sync.core.state import StateManager
from bookmark_sync.core.tombstones import TombstoneStore
from bookmark_sync.core.tree import BookmarkStore, BookmarkStoreError

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    """What callers can observe of the engine."""

    IDLE = "idle"
    RUNNING = "running"


class Trigger(str, Enum):
    """Why a cycle was requested."""

    MANUAL = "manual"
    PASSIVE = "passive"
    STARTUP = "startup"


class SyncAlreadyRunningError(Exception):
    """A manual sync was requested while a cycle is running."""

    def __init__(self) -> None:
        super().__init__("Sync already running")


class DocumentStore(Protocol):
    """Generic create/read/update of the remote document."""

    async def read(self, document_id: str) -> RemoteBlob | None:
        ...

    async def update(self, document_id: str, content: str) -> None:
        ...

    async def create(self, content: str) -> str:
        ...


@dataclass
class SyncResult:
    """Statistics for one sync cycle."""

    trigger: Trigger
    created_count: int = 0
    deleted_count: int = 0
    kept_count: int = 0
    uploaded_count: int = 0
    revived_count: int = 0
    folders_merged: int = 0
    items_staged: int = 0
    document_id: str | None = None
    dry_run: bool = False
    start_time: float = 0.0
    end_time: float = 0.0
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        """Duration in seconds."""
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        if self.start_time:
            return time.time() - self.start_time
        return 0.0


class SyncEngine:
    """
    Main sync engine.

    Example:
        engine = SyncEngine(settings, SQLiteBookmarkStore(path))

        # Manual trigger: errors and "already running" are raised
        result = await engine.sync_now()

        # Automatic trigger: dropped while running, errors only logged
        await engine.run_automatic(Trigger.PASSIVE)
    """

    def __init__(
        self,
        settings: Settings,
        store: BookmarkStore,
        documents: DocumentStore | None = None,
        state_mgr: StateManager | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """
        Initialize sync engine.

        Args:
            settings: Application settings
            store: Local bookmark tree
            documents: Remote document store (defaults to the Gist client)
            state_mgr: Local state (defaults to ``settings.sync.state_file``)
            clock: Epoch-milliseconds clock
        """
        self.settings = settings
        self.store = store
        self.documents = documents or create_gist_client(settings)
        self._owns_documents = documents is None
        self.state_mgr = state_mgr or StateManager(settings.sync.state_file)
        self.clock = clock
        self.tombstones = TombstoneStore(self.state_mgr, clock=clock)
        self.merger = MergeEngine()
        self.applier = ApplyEngine(store, self.tombstones, clock=clock)
        self._status = SyncStatus.IDLE

    @property
    def status(self) -> SyncStatus:
        return self._status

    async def close(self) -> None:
        """Close the remote client if the engine created it."""
        if self._owns_documents:
            await self.documents.close()  # type: ignore[attr-defined]

    async def __aenter__(self) -> "SyncEngine":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    @asynccontextmanager
    async def _running(self) -> AsyncIterator[None]:
        if self._status is SyncStatus.RUNNING:
            raise SyncAlreadyRunningError()
        self._status = SyncStatus.RUNNING
        try:
            yield
        finally:
            self._status = SyncStatus.IDLE

    # =========================================================================
    # Triggers
    # =========================================================================

    async def sync_now(self) -> SyncResult:
        """
        Run a cycle for a manual caller.

        Raises:
            SyncAlreadyRunningError: a cycle is already running
            ConfigurationError: remote location/credentials missing
            TransportError: the remote document could not be read or written
        """
        self.settings.require_credentials()
        async with self._running():
            return await self._cycle(Trigger.MANUAL)

    async def run_automatic(self, trigger: Trigger) -> SyncResult | None:
        """Run a cycle for a passive or startup trigger; failures are logged only."""
        if self._status is SyncStatus.RUNNING:
            logger.debug(f"Dropping {trigger.value} trigger, sync already running")
            return None

        try:
            self.settings.require_credentials()
            async with self._running():
                return await self._cycle(trigger)
        except ConfigurationError as e:
            logger.debug(f"Skipping {trigger.value} sync: {e}")
        except TransportError as e:
            logger.error(f"{trigger.value.capitalize()} sync failed: {e}")
        except BookmarkStoreError as e:
            logger.error(f"{trigger.value.capitalize()} sync could not read bookmarks: {e}")
        return None

    def record_removed(self, items: Iterable[Item]) -> list[Tombstone]:
        """Record tombstones for items removed locally outside a cycle."""
        if self._status is SyncStatus.RUNNING:
            return []
        return self.tombstones.record_many(items)

    def record_created(self, item: Item) -> bool:
        """Clear the tombstone of a key recreated locally outside a cycle."""
        if self._status is SyncStatus.RUNNING:
            return False
        return self.tombstones.clear(item.key)

    # =========================================================================
    # Cycle
    # =========================================================================

    async def _cycle(self, trigger: Trigger) -> SyncResult:
        result = SyncResult(
            trigger=trigger,
            dry_run=self.settings.sync.dry_run,
            start_time=time.time(),
        )
        context: dict[str, str | None] = {
            "trigger": trigger.value,
            "replica_id": self.state_mgr.replica_id,
        }
        logger.info("Starting sync", extra=context)

        tree = await self.store.get_tree()
        local = build_local(tree)
        my_last_sync = self.state_mgr.last_sync

        document_id = self.state_mgr.resolve_document_id(self.settings.gist_id)
        context["document_id"] = document_id or None
        blob = await self.documents.read(document_id) if document_id else None
        remote_doc = self._parse(blob)
        remote = build_remote(remote_doc.items)

        decisions = self.merger.merge(
            local,
            remote,
            self.tombstones.effective(remote_doc.tombstones),
            my_last_sync,
        )
        counts = count_actions(decisions)
        result.kept_count = counts[Action.KEEP]
        result.uploaded_count = counts[Action.UPLOAD]
        result.revived_count = sum(1 for d in decisions.values() if d.revived)

        if result.dry_run:
            result.created_count = counts[Action.CREATE]
            result.deleted_count = counts[Action.DELETE]
            result.end_time = time.time()
            logger.info(
                f"Dry run planned {len(decisions)} decision(s), nothing written", extra=context
            )
            return result

        dedupe = await self.applier.dedupe_folders()
        applied = await self.applier.apply(decisions, remote, dedupe)
        result.created_count = applied.created_count
        result.deleted_count = applied.deleted_count
        result.folders_merged = len(dedupe.removed)
        result.errors = [str(e) for e in dedupe.errors + applied.errors]

        now = self.clock()
        outbound = self._build_document(remote_doc, applied.items, now)
        result.items_staged = len(outbound.items)
        content = outbound.to_json()

        if blob is None:
            result.document_id = await self.documents.create(content)
            self.state_mgr.remember_document_id(result.document_id, self.settings.gist_id)
            context["document_id"] = result.document_id
            logger.info("Created remote document", extra=context)
        else:
            await self.documents.update(blob.document_id, content)
            result.document_id = blob.document_id

        self.state_mgr.mark_sync_complete(now)
        result.end_time = time.time()
        logger.info(
            f"Sync complete: {result.created_count} created, "
            f"{result.deleted_count} deleted, {result.uploaded_count} uploaded",
            extra=context,
        )
        return result

    def _parse(self, blob: RemoteBlob | None) -> RemoteDocument:
        if blob is None:
            return RemoteDocument.empty()
        try:
            return RemoteDocument.parse(blob.content)
        except ParseError as e:
            logger.warning(f"Ignoring malformed remote document: {e}")
            return RemoteDocument.empty()

    def _build_document(
        self,
        previous: RemoteDocument,
        items: list[Item],
        now: int,
    ) -> RemoteDocument:
        devices = dict(previous.devices)
        replica_id = self.state_mgr.replica_id
        devices[replica_id] = DeviceClock(name=self.settings.device_name, last_sync=now)

        live_keys = {item.key for item in items if not item.deleted}
        tombstones = {
            key: tombstone
            for key, tombstone in self.tombstones.effective(previous.tombstones).items()
            if key not in live_keys
        }

        return RemoteDocument(
            version=DOCUMENT_VERSION,
            last_sync=now,
            last_sync_by=replica_id,
            devices=devices,
            items=items,
            tombstones=tombstones,
        )
