"""
Log output for bookmark sync runs.

Console output goes through rich unless json or simple lines are asked for.
Cycle context passed as ``extra`` (trigger, document, replica) is rendered
as fields in json output and as a bracketed prefix elsewhere.
"""

from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

console = Console(stderr=True)

logger = logging.getLogger("bookmark_sync")

CONTEXT_FIELDS = ("trigger", "document_id", "replica_id")

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(context)s%(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def cycle_context(record: logging.LogRecord) -> dict[str, str]:
    """Context fields set on a record through ``extra``."""
    return {
        name: str(getattr(record, name))
        for name in CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


class ContextFilter(logging.Filter):
    """Adds a ``context`` attribute like ``[manual g1] `` for text formats."""

    def filter(self, record: logging.LogRecord) -> bool:
        values = cycle_context(record).values()
        record.context = f"[{' '.join(values)}] " if values else ""
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with cycle context as top-level fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "time": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(cycle_context(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def _console_handler(format_style: str) -> logging.Handler:
    if format_style == "json":
        handler: logging.Handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter())
        return handler
    if format_style == "simple":
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=DATE_FORMAT))
        return handler

    handler = RichHandler(console=console, rich_tracebacks=True, show_path=False)
    handler.setFormatter(logging.Formatter("%(context)s%(message)s"))
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Path | str | None = None,
    format_style: str = "rich",
    max_file_size_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """
    Route the package logger to the console and, optionally, a rotating file.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_file: File that receives the same records as plain lines
        format_style: "rich", "json", or "simple" for the console
        max_file_size_mb: Size at which the file rotates
        backup_count: Rotated files kept
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.handlers.clear()
    logger.setLevel(log_level)

    handlers = [_console_handler(format_style)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=DATE_FORMAT))
        handlers.append(file_handler)

    for handler in handlers:
        # Logger filters never see records propagated from child loggers
        handler.addFilter(ContextFilter())
        handler.setLevel(log_level)
        logger.addHandler(handler)
