"""
Tombstone Store - durable record of local deletions with expiry.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Mapping, Protocol

from bookmark_sync.core.models import Item, Tombstone, now_ms

logger = logging.getLogger(__name__)

TOMBSTONE_TTL_MS = 24 * 60 * 60 * 1000


class TombstoneBackend(Protocol):
    """Durable get/set of the key -> tombstone map."""

    def get_tombstones(self) -> dict[str, Tombstone]:
        ...

    def set_tombstones(self, tombstones: dict[str, Tombstone]) -> None:
        ...


def prune_expired(
    tombstones: Mapping[str, Tombstone],
    now: int,
    ttl_ms: int = TOMBSTONE_TTL_MS,
) -> dict[str, Tombstone]:
    """Drop tombstones recorded more than ``ttl_ms`` before ``now``."""
    return {
        key: tombstone
        for key, tombstone in tombstones.items()
        if now - tombstone.deleted_at <= ttl_ms
    }


class TombstoneStore:
    """
    Local tombstones, pruned on every read and mutation.

    Example:
        store = TombstoneStore(state_mgr)
        store.record(item)          # item removed locally
        store.clear(item.key)       # key recreated
        view = store.effective(remote_doc.tombstones)
    """

    def __init__(
        self,
        backend: TombstoneBackend,
        ttl_ms: int = TOMBSTONE_TTL_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.backend = backend
        self.ttl_ms = ttl_ms
        self.clock = clock

    def all(self) -> dict[str, Tombstone]:
        """Live tombstones; expired entries are dropped from the backend too."""
        stored = self.backend.get_tombstones()
        live = prune_expired(stored, self.clock(), self.ttl_ms)
        if len(live) != len(stored):
            logger.debug(f"Pruned {len(stored) - len(live)} expired tombstone(s)")
            self.backend.set_tombstones(live)
        return live

    def get(self, key: str) -> Tombstone | None:
        return self.all().get(key)

    def record(self, item: Item) -> Tombstone:
        """Record that ``item`` was deleted now."""
        return self.record_many([item])[0]

    def record_many(self, items: Iterable[Item]) -> list[Tombstone]:
        now = self.clock()
        tombstones = prune_expired(self.backend.get_tombstones(), now, self.ttl_ms)
        recorded = []
        for item in items:
            tombstone = Tombstone.for_item(item, deleted_at=now)
            tombstones[item.key] = tombstone
            recorded.append(tombstone)
        self.backend.set_tombstones(tombstones)
        return recorded

    def clear(self, key: str) -> bool:
        """Remove the tombstone for ``key``. Returns True if one existed."""
        tombstones = prune_expired(self.backend.get_tombstones(), self.clock(), self.ttl_ms)
        found = tombstones.pop(key, None) is not None
        if found:
            self.backend.set_tombstones(tombstones)
        return found

    def effective(self, remote: Mapping[str, Tombstone]) -> dict[str, Tombstone]:
        """
        Union of remote-declared and local tombstones.

        Local entries win on collision. Expired entries from either side
        are left out.
        """
        merged = prune_expired(remote, self.clock(), self.ttl_ms)
        merged.update(self.all())
        return merged
