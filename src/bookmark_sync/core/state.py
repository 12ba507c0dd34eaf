"""
State Manager - durable per-replica state.

Persists, in a single JSON file:
- The replica id (random, created once and reused)
- The timestamp of the last completed sync cycle
- The remote document id, once this replica has created one
- Local tombstones (key -> Tombstone)

Every accessor re-reads the file, so a CLI command and a running watcher
can share one state file.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bookmark_sync.core.models import ParseError, Tombstone

logger = logging.getLogger(__name__)


@dataclass
class LocalState:
    """Complete local state for persistence."""

    replica_id: str
    last_sync: int = 0
    document_id: str | None = None
    document_origin: str = ""
    tombstones: dict[str, Tombstone] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "replica_id": self.replica_id,
            "last_sync": self.last_sync,
            "document_id": self.document_id,
            "document_origin": self.document_origin,
            "tombstones": {
                key: tombstone.to_dict() for key, tombstone in self.tombstones.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LocalState":
        """Create from dictionary."""
        return cls(
            replica_id=data["replica_id"],
            last_sync=int(data.get("last_sync", 0)),
            document_id=data.get("document_id"),
            document_origin=data.get("document_origin", ""),
            tombstones={
                key: Tombstone.from_dict(key, entry)
                for key, entry in data.get("tombstones", {}).items()
            },
        )


class StateManager:
    """
    State persistence for one replica.

    Also serves as the durable backend of the tombstone store
    (``get_tombstones`` / ``set_tombstones``).

    Example:
        state_mgr = StateManager(Path(".bookmark-sync-state.json"))
        replica_id = state_mgr.replica_id

        # After a completed cycle
        state_mgr.mark_sync_complete(now_ms())
    """

    def __init__(self, state_file: Path | str) -> None:
        """
        Initialize state manager.

        Args:
            state_file: Path to state file
        """
        self.state_file = Path(state_file)

    @property
    def state(self) -> LocalState:
        """Current state, created on first access."""
        return self.load() or self._create()

    def load(self) -> LocalState | None:
        """Load state from file if it exists."""
        if not self.state_file.exists():
            return None

        try:
            data = json.loads(self.state_file.read_text())
            return LocalState.from_dict(data)
        except (
            json.JSONDecodeError, KeyError, TypeError, ValueError, OverflowError, ParseError
        ) as e:
            # Corrupted state file; a fresh replica id is issued
            logger.warning(f"Could not load state file {self.state_file}: {e}")
            return None

    def save(self, state: LocalState) -> None:
        """Save state to file."""
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self.state_file.write_text(json.dumps(state.to_dict(), indent=2))

    def _create(self) -> LocalState:
        state = LocalState(replica_id=uuid.uuid4().hex)
        self.save(state)
        logger.info(f"Created replica id {state.replica_id}")
        return state

    @property
    def replica_id(self) -> str:
        return self.state.replica_id

    @property
    def last_sync(self) -> int:
        return self.state.last_sync

    def resolve_document_id(self, configured: str) -> str | None:
        """
        Id of the remote document to use.

        A document this replica created replaces the configured id it was
        created for (the configured one did not exist at the time).
        """
        state = self.state
        if state.document_id and state.document_origin == configured:
            return state.document_id
        return configured or None

    def remember_document_id(self, document_id: str, origin: str = "") -> None:
        """Record the id of a remote document this replica created."""
        state = self.state
        state.document_id = document_id
        state.document_origin = origin
        self.save(state)

    def mark_sync_complete(self, timestamp: int) -> None:
        """Persist the completion time of a sync cycle."""
        state = self.state
        state.last_sync = timestamp
        self.save(state)

    def get_tombstones(self) -> dict[str, Tombstone]:
        return dict(self.state.tombstones)

    def set_tombstones(self, tombstones: dict[str, Tombstone]) -> None:
        state = self.state
        state.tombstones = dict(tombstones)
        self.save(state)

    def get_summary(self) -> dict[str, Any]:
        """Get a summary of current state for display."""
        state = self.state
        return {
            "replica_id": state.replica_id,
            "last_sync": state.last_sync,
            "document_id": state.document_id,
            "tombstones": len(state.tombstones),
        }
