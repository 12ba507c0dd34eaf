"""
Rich Terminal Display Components.

Provides console output for:
- Sync summaries
- Local state and device clock tables
- Bookmark tree listing
- Status messages
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.table import Table
from rich.tree import Tree

if TYPE_CHECKING:
    from bookmark_sync.core.engine import SyncResult
    from bookmark_sync.core.models import RemoteDocument
    from bookmark_sync.core.tree import BookmarkNode


console = Console()


def format_timestamp(epoch_ms: int | None) -> str:
    """Format epoch milliseconds as local time, or 'never'."""
    if not epoch_ms:
        return "never"
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def print_summary(result: SyncResult) -> None:
    """Print a summary table after a sync cycle."""
    title = "Sync Plan (dry run)" if result.dry_run else "Sync Summary"
    table = Table(title=title, border_style="green")

    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Trigger", result.trigger.value)
    table.add_row("Duration", f"{result.duration_seconds:.1f}s")
    table.add_row("Created", f"{result.created_count:,}")
    table.add_row("Deleted", f"{result.deleted_count:,}")
    table.add_row("Kept", f"{result.kept_count:,}")
    table.add_row("Uploaded", f"{result.uploaded_count:,}")
    table.add_row("Revived", f"{result.revived_count:,}")
    table.add_row("Duplicate folders merged", f"{result.folders_merged:,}")
    if not result.dry_run:
        table.add_row("Items in document", f"{result.items_staged:,}")
        table.add_row("Document", result.document_id or "N/A")
    table.add_row("Errors", f"{len(result.errors):,}")

    console.print(table)


def print_state(summary: dict[str, Any]) -> None:
    """Print this replica's local state."""
    table = Table(title="Local State", border_style="blue")
    table.add_column("Property", style="cyan")
    table.add_column("Value")

    table.add_row("Replica ID", summary["replica_id"])
    table.add_row("Last Sync", format_timestamp(summary["last_sync"]))
    table.add_row("Document", summary.get("document_id") or "[dim]configured gist[/dim]")
    table.add_row("Tombstones", str(summary["tombstones"]))

    console.print(table)


def print_devices(document: RemoteDocument, replica_id: str) -> None:
    """Print the device clocks stored in the remote document."""
    table = Table(title="Devices", border_style="green")
    table.add_column("Replica")
    table.add_column("Name")
    table.add_column("Last Sync", justify="right")

    for device_id, clock in sorted(
        document.devices.items(), key=lambda entry: entry[1].last_sync, reverse=True
    ):
        marker = " [bold](this)[/bold]" if device_id == replica_id else ""
        table.add_row(device_id[:12] + marker, clock.name, format_timestamp(clock.last_sync))

    console.print(table)
    live = sum(1 for item in document.items if not item.deleted)
    print_info(
        f"Document v{document.version}: {live} live item(s), "
        f"{len(document.tombstones)} tombstone(s), last written by "
        f"{(document.last_sync_by or 'nobody')[:12]} at {format_timestamp(document.last_sync)}"
    )


def print_tree(root: BookmarkNode) -> None:
    """Print the local bookmark tree."""
    tree = Tree("[bold]Bookmarks[/bold]")

    def add(branch: Tree, node: BookmarkNode) -> None:
        for child in node.children:
            if child.is_folder:
                add(branch.add(f"[bold blue]{child.title}[/bold blue] [dim]#{child.id}[/dim]"), child)
            else:
                branch.add(f"{child.title} [dim]{child.url} #{child.id}[/dim]")

    add(tree, root)
    console.print(tree)


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red bold]Error:[/red bold] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green bold]✓[/green bold] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow bold]⚠[/yellow bold] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]ℹ[/blue] {message}")
