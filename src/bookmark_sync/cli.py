"""
Bookmark Sync CLI - Command Line Interface.

Keeps a local bookmark tree in sync with a shared GitHub Gist document.

Commands:
    sync    Run one sync cycle now
    watch   Sync on startup and after local changes until interrupted
    status  Show local state and the devices in the remote document
    add     Add a bookmark or folder to the local tree
    remove  Remove a bookmark or folder from the local tree
    list    Show the local tree
    config  Manage configuration
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import SecretStr
from rich.table import Table

from bookmark_sync import __version__
from bookmark_sync.config import ConfigurationError, Settings, load_settings
from bookmark_sync.connectors.gist_client import TransportError, create_gist_client
from bookmark_sync.connectors.sqlite import SQLiteBookmarkStore
from bookmark_sync.core.apply import FolderResolver
from bookmark_sync.core.engine import SyncAlreadyRunningError, SyncEngine, SyncResult
from bookmark_sync.core.models import ParseError, RemoteDocument
from bookmark_sync.core.scheduler import SyncScheduler, watch_store
from bookmark_sync.core.snapshot import flatten, node_to_item, parent_title_of
from bookmark_sync.core.state import StateManager
from bookmark_sync.core.tombstones import TombstoneStore
from bookmark_sync.core.tree import BookmarkNode, BookmarkStoreError
from bookmark_sync.utils.display import (
    console,
    print_devices,
    print_error,
    print_info,
    print_state,
    print_success,
    print_summary,
    print_tree,
    print_warning,
)
from bookmark_sync.utils.logger import setup_logging


# Create the Typer app
app = typer.Typer(
    name="bookmark-sync",
    help="Sync a local bookmark tree through a GitHub Gist.",
    add_completion=True,
    rich_markup_mode="rich",
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]bookmark-sync[/bold cyan] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Bookmark Sync - keep bookmarks consistent across machines via a Gist."""
    pass


ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to config file.",
    exists=True,
)
DatabaseOption = typer.Option(
    None,
    "--database",
    "-d",
    help="Path to the local bookmark store (overrides config).",
)


# =============================================================================
# SYNC Command
# =============================================================================
@app.command()
def sync(
    config_file: Optional[Path] = ConfigOption,
    database: Optional[Path] = DatabaseOption,
    gist_id: Optional[str] = typer.Option(
        None,
        "--gist-id",
        "-g",
        help="Gist holding the sync document (overrides config).",
    ),
    token: Optional[str] = typer.Option(
        None,
        "--token",
        envvar="BOOKMARK_SYNC_GITHUB_TOKEN",
        help="GitHub personal access token.",
    ),
    mock_server: Optional[str] = typer.Option(
        None,
        "--mock-server",
        help="Use a mock Gist server at this URL instead of GitHub.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Plan the merge without changing anything.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Minimal output.",
    ),
) -> None:
    """
    Run one sync cycle now.

    Example:
        bookmark-sync sync --gist-id abc123 --database ./bookmarks.db
    """
    settings = _load(
        config_file,
        database=database,
        gist_id=gist_id,
        token=token,
        mock_server=mock_server,
        dry_run=dry_run,
    )
    _setup_logging(settings, quiet)

    if dry_run:
        print_warning("DRY RUN - No changes will be made")

    try:
        with console.status("Syncing bookmarks..."):
            result = asyncio.run(_run_sync(settings))
    except ConfigurationError as e:
        for err in e.errors:
            print_error(err)
        print_info("Use --help for configuration options.")
        raise typer.Exit(1)
    except SyncAlreadyRunningError as e:
        print_warning(str(e))
        raise typer.Exit(1)
    except (TransportError, BookmarkStoreError) as e:
        print_error(str(e))
        raise typer.Exit(1)

    if not quiet:
        console.print()
        print_summary(result)

    if result.errors:
        console.print()
        print_warning(f"{len(result.errors)} operation(s) skipped:")
        for err in result.errors[:10]:
            print_error(f"  • {err}")
        if len(result.errors) > 10:
            print_info(f"  ... and {len(result.errors) - 10} more")
    else:
        print_success("Sync completed successfully!")


async def _run_sync(settings: Settings) -> SyncResult:
    with SQLiteBookmarkStore(settings.store.database_path) as store:
        async with SyncEngine(settings, store) as engine:
            return await engine.sync_now()


# =============================================================================
# WATCH Command
# =============================================================================
@app.command()
def watch(
    config_file: Optional[Path] = ConfigOption,
    database: Optional[Path] = DatabaseOption,
) -> None:
    """
    Sync on startup and after every local change until interrupted.

    Changes made to the bookmark store by other processes (for example
    ``bookmark-sync add``) are picked up and synced after a quiet period.
    """
    settings = _load(config_file, database=database)
    _setup_logging(settings, quiet=False)

    errors = settings.validate_credentials()
    if errors:
        for err in errors:
            print_error(err)
        raise typer.Exit(1)

    print_info(
        f"Watching {settings.store.database_path} "
        f"(debounce {settings.sync.debounce_seconds:g}s). Press Ctrl+C to stop."
    )
    asyncio.run(_watch(settings))
    print_success("Stopped.")


async def _watch(settings: Settings) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: Ctrl+C still ends the loop via KeyboardInterrupt
            pass

    with SQLiteBookmarkStore(settings.store.database_path) as store:
        async with SyncEngine(settings, store) as engine:
            scheduler = SyncScheduler(engine, settings.sync)
            scheduler.on_startup()
            try:
                await watch_store(store, scheduler, settings.sync.poll_interval_seconds, stop)
                # Flush changes still inside the debounce window
                await scheduler.drain()
            finally:
                await scheduler.close()


# =============================================================================
# STATUS Command
# =============================================================================
@app.command()
def status(
    config_file: Optional[Path] = ConfigOption,
    remote: bool = typer.Option(
        True,
        "--remote/--local-only",
        help="Also fetch the remote document and show its devices.",
    ),
) -> None:
    """Show this replica's state and the devices in the remote document."""
    settings = _load(config_file)
    state_mgr = StateManager(settings.sync.state_file)
    print_state(state_mgr.get_summary())

    if not remote:
        return

    if settings.validate_credentials():
        print_info("Remote not configured, skipping device list.")
        return

    document_id = state_mgr.resolve_document_id(settings.gist_id)
    if not document_id:
        print_info("No remote document yet. Run a sync first.")
        return

    try:
        document = asyncio.run(_fetch_document(settings, document_id))
    except TransportError as e:
        print_error(str(e))
        raise typer.Exit(1)
    except ParseError as e:
        print_warning(f"Remote document is malformed: {e}")
        raise typer.Exit(1)

    if document is None:
        print_info(f"Gist {document_id} does not exist yet.")
        return

    console.print()
    print_devices(document, state_mgr.replica_id)


async def _fetch_document(settings: Settings, document_id: str) -> RemoteDocument | None:
    async with create_gist_client(settings) as client:
        blob = await client.read(document_id)
    if blob is None:
        return None
    return RemoteDocument.parse(blob.content)


# =============================================================================
# Local tree commands
# =============================================================================
@app.command()
def add(
    title: str = typer.Argument(..., help="Bookmark or folder title."),
    url: Optional[str] = typer.Option(
        None,
        "--url",
        "-u",
        help="Bookmark URL (omit to create a folder).",
    ),
    parent: Optional[str] = typer.Option(
        None,
        "--parent",
        "-p",
        help=(
            "Title of the parent folder, created under Other Bookmarks if missing "
            "(default: Other Bookmarks)."
        ),
    ),
    config_file: Optional[Path] = ConfigOption,
    database: Optional[Path] = DatabaseOption,
) -> None:
    """Add a bookmark or folder to the local tree."""
    settings = _load(config_file, database=database)
    try:
        node_id = asyncio.run(_add(settings, title, url, parent))
    except BookmarkStoreError as e:
        print_error(str(e))
        raise typer.Exit(1)
    print_success(f"Added '{title}' (#{node_id})")


async def _add(settings: Settings, title: str, url: str | None, parent: str | None) -> str:
    with SQLiteBookmarkStore(settings.store.database_path) as store:
        resolver = FolderResolver(store)
        parent_id = await resolver.resolve(parent)
        node = await store.create(parent_id, title, url)
        tree = await store.get_tree()
        tombstones = TombstoneStore(StateManager(settings.sync.state_file))
        for item in [*resolver.created, node_to_item(node, parent_title_of(tree, node))]:
            tombstones.clear(item.key)
        return node.id


@app.command()
def remove(
    node_id: str = typer.Argument(..., help="Id of the node to remove (see 'list')."),
    config_file: Optional[Path] = ConfigOption,
    database: Optional[Path] = DatabaseOption,
) -> None:
    """Remove a bookmark or folder (with its contents) from the local tree."""
    settings = _load(config_file, database=database)
    try:
        removed = asyncio.run(_remove(settings, node_id))
    except BookmarkStoreError as e:
        print_error(str(e))
        raise typer.Exit(1)
    print_success(f"Removed {removed} item(s)")


async def _remove(settings: Settings, node_id: str) -> int:
    with SQLiteBookmarkStore(settings.store.database_path) as store:
        tree = await store.get_tree()
        node = tree.find(node_id)
        if node is None:
            raise BookmarkStoreError(f"Node not found: {node_id}")

        items = list(flatten(node, parent_title_of(tree, node)))
        if node.is_folder:
            await store.remove_tree(node.id)
        else:
            await store.remove(node.id)
        TombstoneStore(StateManager(settings.sync.state_file)).record_many(items)
        return len(items)


@app.command("list")
def list_bookmarks(
    config_file: Optional[Path] = ConfigOption,
    database: Optional[Path] = DatabaseOption,
) -> None:
    """Show the local bookmark tree."""
    settings = _load(config_file, database=database)
    print_tree(asyncio.run(_tree(settings)))


async def _tree(settings: Settings) -> BookmarkNode:
    with SQLiteBookmarkStore(settings.store.database_path) as store:
        return await store.get_tree()


# =============================================================================
# CONFIG Command
# =============================================================================
@app.command()
def config(
    show: bool = typer.Option(
        False,
        "--show",
        help="Show current configuration.",
    ),
    init: bool = typer.Option(
        False,
        "--init",
        help="Write a config file with the current settings.",
    ),
    output: Path = typer.Option(
        Path("config.toml"),
        "--output",
        "-o",
        help="Output path for config file.",
    ),
) -> None:
    """Manage configuration."""
    if init:
        Settings().to_file(output)
        print_success(f"Generated config file: {output}")
        return

    if show:
        settings = Settings()
        table = Table(title="Current Configuration", border_style="cyan")
        table.add_column("Setting", style="cyan")
        table.add_column("Value")

        remote = settings.mock_server_url if settings.use_mock_server else settings.api_url
        table.add_row("Remote", remote)
        table.add_row("Gist ID", settings.gist_id or "[dim]created on first sync[/dim]")
        table.add_row(
            "Token",
            "set" if settings.github_token.get_secret_value() else "[dim]not set[/dim]",
        )
        table.add_row("Device Name", settings.device_name)
        table.add_row("Bookmark Store", str(settings.store.database_path))
        table.add_row("State File", str(settings.sync.state_file))
        table.add_row("Auto Sync", str(settings.sync.auto_sync))
        table.add_row("Sync On Startup", str(settings.sync.sync_on_startup))
        table.add_row("Debounce", f"{settings.sync.debounce_seconds:g}s")

        console.print(table)
        return

    console.print("Use --show to view config or --init to create config file.")


# =============================================================================
# Helper Functions
# =============================================================================
def _load(config_file: Path | None, **overrides: Any) -> Settings:
    """Build settings from config file and CLI overrides."""
    try:
        settings = load_settings(config_file) if config_file else Settings()
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if overrides.get("database"):
        settings.store.database_path = overrides["database"]
    if overrides.get("gist_id"):
        settings.gist_id = overrides["gist_id"]
    if overrides.get("token"):
        settings.github_token = SecretStr(overrides["token"])
    if overrides.get("mock_server"):
        settings.use_mock_server = True
        settings.mock_server_url = overrides["mock_server"]
    if overrides.get("dry_run"):
        settings.sync.dry_run = True

    return settings


def _setup_logging(settings: Settings, quiet: bool) -> None:
    setup_logging(
        level="WARNING" if quiet else settings.logging.level,
        log_file=settings.logging.file,
        format_style=settings.logging.format,
        max_file_size_mb=settings.logging.max_file_size_mb,
        backup_count=settings.logging.backup_count,
    )


if __name__ == "__main__":
    app()
