"""
Snapshot Builder - flattens each side into a key -> Item map.
"""

from __future__ import annotations

from typing import Iterable, Iterator

from bookmark_sync.core.identity import item_key
from bookmark_sync.core.models import Item, ItemMap
from bookmark_sync.core.tree import BookmarkNode


def node_to_item(node: BookmarkNode, parent_title: str | None) -> Item:
    """Project a single tree node, ignoring its children."""
    return Item(
        key=item_key(node.url, node.title, parent_title),
        title=node.title,
        url=node.url,
        date_added=node.date_added,
        date_modified=node.date_modified or node.date_added,
        parent_title=parent_title,
    )


def flatten(node: BookmarkNode, parent_title: str | None = None) -> Iterator[Item]:
    """
    Yield items for ``node`` and its descendants, depth-first.

    Permanent containers are not yielded themselves; their children are
    attributed to the container's canonical title.
    """
    permanent = node.permanent_folder
    if permanent is not None:
        child_parent = permanent.canonical_title
    else:
        yield node_to_item(node, parent_title)
        child_parent = node.title

    for child in node.children:
        yield from flatten(child, child_parent)


def build_local(root: BookmarkNode) -> ItemMap:
    """
    Flatten the local tree.

    The root node itself carries no item. When the same key occurs more
    than once (the same URL bookmarked in two folders) the first one seen
    in depth-first order is kept.
    """
    items: ItemMap = {}
    for child in root.children:
        for item in flatten(child):
            items.setdefault(item.key, item)
    return items


def build_remote(entries: Iterable[Item]) -> ItemMap:
    """Key the document's entries, preserving ``deleted`` and ``parent_title``."""
    return {item.key: item for item in entries}


def parent_title_of(root: BookmarkNode, node: BookmarkNode) -> str | None:
    """Parent title ``node`` would be attributed in a snapshot of ``root``."""
    if node.parent_id is None:
        return None
    parent = root.find(node.parent_id)
    if parent is None or parent is root:
        return None
    permanent = parent.permanent_folder
    if permanent is not None:
        return permanent.canonical_title
    return parent.title
