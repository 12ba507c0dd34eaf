"""
Merge Engine - per-key decision table.

Turns the local map, the remote map and the effective tombstone view into
one action per key. Remote-declared keys are evaluated first, then keys
only present locally:

1. remote deleted
   - local present: KEEP if the local copy changed after this replica's
     last completed sync (revive), else DELETE
   - local absent: no action
2. remote live, local absent
   - tombstone present: CREATE if the remote copy was touched after the
     local deletion (revive), else DELETE using the tombstone's fields
   - no tombstone: CREATE
3. remote live, local present
   - local deleted: DELETE
   - otherwise KEEP the copy with the greater ``date_modified``
     (ties favor remote); the whole record wins, fields are never mixed
4. local only, not deleted: UPLOAD

The engine is pure: same inputs, same output.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Mapping

from bookmark_sync.core.models import Action, Item, ItemMap, Tombstone


@dataclass(frozen=True)
class MergeDecision:
    """The action for one key and the record that carries it forward."""

    key: str
    action: Action
    item: Item
    revived: bool = False


def merge_remote_key(
    remote: Item,
    local: Item | None,
    tombstone: Tombstone | None,
    my_last_sync: int,
) -> MergeDecision | None:
    """Decide a key that the remote document declares."""
    key = remote.key

    if remote.deleted:
        if local is None:
            return None
        if local.date_modified > my_last_sync:
            return MergeDecision(key, Action.KEEP, local, revived=True)
        return MergeDecision(key, Action.DELETE, local)

    if local is None:
        if tombstone is None:
            return MergeDecision(key, Action.CREATE, remote)
        if remote.date_modified > tombstone.deleted_at:
            return MergeDecision(key, Action.CREATE, remote, revived=True)
        return MergeDecision(
            key,
            Action.DELETE,
            remote.with_changes(
                title=tombstone.title,
                url=tombstone.url,
                parent_title=tombstone.parent_title,
            ),
        )

    if local.deleted:
        return MergeDecision(key, Action.DELETE, local)

    winner = local if local.date_modified > remote.date_modified else remote
    return MergeDecision(key, Action.KEEP, winner)


def merge_local_key(local: Item) -> MergeDecision | None:
    """Decide a key the remote document does not mention."""
    if local.deleted:
        return None
    return MergeDecision(local.key, Action.UPLOAD, local)


class MergeEngine:
    """
    Applies the decision table to whole maps.

    Example:
        engine = MergeEngine()
        decisions = engine.merge(local, remote, tombstones, my_last_sync=state.last_sync)
        creates = [d for d in decisions.values() if d.action is Action.CREATE]
    """

    def merge(
        self,
        local: ItemMap,
        remote: ItemMap,
        tombstones: Mapping[str, Tombstone],
        my_last_sync: int = 0,
    ) -> dict[str, MergeDecision]:
        """
        Merge both sides.

        Args:
            local: Local snapshot
            remote: Remote snapshot
            tombstones: Effective tombstone view (remote + local)
            my_last_sync: This replica's last completed cycle (0 = never)

        Returns:
            key -> MergeDecision; keys needing no action are absent
        """
        decisions: dict[str, MergeDecision] = {}

        for key, remote_item in remote.items():
            decision = merge_remote_key(
                remote_item,
                local.get(key),
                tombstones.get(key),
                my_last_sync,
            )
            if decision is not None:
                decisions[key] = decision

        for key, local_item in local.items():
            if key in remote:
                continue
            decision = merge_local_key(local_item)
            if decision is not None:
                decisions[key] = decision

        return decisions


def count_actions(decisions: Mapping[str, MergeDecision]) -> dict[Action, int]:
    """Number of decisions per action, every action present."""
    counts = Counter(decision.action for decision in decisions.values())
    return {action: counts.get(action, 0) for action in Action}
