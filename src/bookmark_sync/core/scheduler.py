"""
Sync Scheduler - turns local events into automatic sync cycles.

- Passive triggers (bookmark created/removed/changed/moved) are debounced:
  every new event restarts the quiet window.
- The startup trigger waits a grace period before its cycle.
- A cycle that has started is never cancelled; only pending timers are.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Protocol

from bookmark_sync.config import SyncOptions
from bookmark_sync.core.engine import SyncEngine, SyncStatus, Trigger
from bookmark_sync.core.models import Item

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Debounced automatic triggers for a SyncEngine.

    Must be used from inside a running event loop.

    Example:
        scheduler = SyncScheduler(engine, settings.sync)
        scheduler.on_startup()

        # From the store's change notifications
        scheduler.on_removed(items)
        scheduler.on_changed()

        await scheduler.close()
    """

    def __init__(self, engine: SyncEngine, options: SyncOptions) -> None:
        self.engine = engine
        self.options = options
        self._debounce: asyncio.Task[None] | None = None
        self._startup: asyncio.Task[None] | None = None
        self._cycles: set[asyncio.Task[object]] = set()

    @property
    def pending(self) -> bool:
        """True while a debounce or startup timer is waiting."""
        return any(t is not None and not t.done() for t in (self._debounce, self._startup))

    # =========================================================================
    # Notifications
    # =========================================================================

    def on_created(self, item: Item) -> None:
        if self.engine.record_created(item):
            logger.debug(f"Cleared tombstone for recreated '{item.title}'")
        self.on_changed()

    def on_removed(self, items: Iterable[Item]) -> None:
        recorded = self.engine.record_removed(items)
        if recorded:
            logger.debug(f"Recorded {len(recorded)} tombstone(s)")
        self.on_changed()

    def on_changed(self) -> None:
        """A passive trigger: changed, moved, created or removed."""
        if not self.options.auto_sync:
            return
        if self.engine.status is SyncStatus.RUNNING:
            logger.debug("Ignoring local change during sync")
            return

        if self._debounce is not None and not self._debounce.done():
            self._debounce.cancel()
        self._debounce = asyncio.create_task(
            self._fire_after(self.options.debounce_seconds, Trigger.PASSIVE)
        )

    def on_startup(self) -> None:
        """Process startup/installation: one cycle after the grace period."""
        if not self.options.sync_on_startup:
            return
        if self._startup is not None and not self._startup.done():
            return
        self._startup = asyncio.create_task(
            self._fire_after(self.options.startup_delay_seconds, Trigger.STARTUP)
        )

    # =========================================================================
    # Timers
    # =========================================================================

    async def _fire_after(self, delay: float, trigger: Trigger) -> None:
        await asyncio.sleep(delay)
        # The cycle runs in its own task so a later timer reset cannot cancel it
        cycle = asyncio.create_task(self.engine.run_automatic(trigger))
        self._cycles.add(cycle)
        cycle.add_done_callback(self._cycles.discard)

    async def drain(self) -> None:
        """Wait for pending timers and the cycles they start."""
        while self.pending or self._cycles:
            waiting = [t for t in (self._debounce, self._startup) if t is not None and not t.done()]
            outcomes = await asyncio.gather(*waiting, *self._cycles, return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, Exception):
                    logger.error(f"Automatic sync crashed: {outcome!r}")

    async def close(self) -> None:
        """Cancel pending timers and wait for running cycles to finish."""
        for task in (self._debounce, self._startup):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        if self._cycles:
            await asyncio.gather(*self._cycles)


class VersionedStore(Protocol):
    def data_version(self) -> int:
        ...


async def watch_store(
    store: VersionedStore,
    scheduler: SyncScheduler,
    poll_interval: float,
    stop: asyncio.Event,
) -> None:
    """Feed writes made by other processes into the passive debounce."""
    last_version = store.data_version()
    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=poll_interval)
        except TimeoutError:
            pass
        version = store.data_version()
        if version != last_version:
            last_version = version
            scheduler.on_changed()
