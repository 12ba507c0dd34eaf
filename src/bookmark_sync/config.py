"""
Bookmark Sync Configuration System.

This module provides a type-safe configuration system using Pydantic.
Settings can be loaded from:
1. Environment variables (prefixed with BOOKMARK_SYNC_)
2. Config file (TOML or JSON)
3. CLI arguments (highest priority)

Example usage:
    from bookmark_sync.config import Settings

    # Load from environment
    settings = Settings()

    # Or with explicit values
    settings = Settings(
        github_token="ghp_...",
        gist_id="abc123",
    )
"""

from __future__ import annotations

import json
import platform
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Missing or invalid remote location/credentials."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


class SyncOptions(BaseModel):
    """Options controlling sync behavior."""

    auto_sync: bool = Field(
        default=True,
        description="Sync automatically after local bookmark changes",
    )
    sync_on_startup: bool = Field(
        default=True,
        description="Sync once shortly after startup",
    )
    debounce_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Quiet window after the last local change before syncing",
    )
    startup_delay_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Grace period before the startup sync",
    )
    poll_interval_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="How often the watcher checks the store for outside changes",
    )
    dry_run: bool = Field(
        default=False,
        description="Plan the merge without touching bookmarks or the gist",
    )
    state_file: Path = Field(
        default=Path(".bookmark-sync-state.json"),
        description="Path to the local state file (replica id, tombstones)",
    )


class StoreConfig(BaseModel):
    """Local bookmark store configuration."""

    database_path: Path = Field(
        default=Path("bookmarks.db"),
        description="Path to the SQLite bookmark store",
    )


class HttpConfig(BaseModel):
    """Remote transport tuning."""

    timeout_seconds: float = Field(default=30.0, gt=0.0)
    max_retries: int = Field(default=3, ge=1, le=10)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Log level",
    )
    file: Path | None = Field(
        default=None,
        description="Log file path (None = console only)",
    )
    format: str = Field(
        default="rich",
        pattern="^(rich|json|simple)$",
        description="Log format: rich (colored), json, or simple",
    )
    max_file_size_mb: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Max log file size before rotation",
    )
    backup_count: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Number of rotated log files to keep",
    )


class Settings(BaseSettings):
    """
    Main settings class for Bookmark Sync.

    Settings are loaded in this priority (highest first):
    1. Explicit constructor arguments
    2. Environment variables (BOOKMARK_SYNC_* prefix)
    3. Config file (if specified)
    4. Defaults

    Example:
        # From environment
        export BOOKMARK_SYNC_GITHUB_TOKEN="ghp_..."
        export BOOKMARK_SYNC_GIST_ID="abc123"
        settings = Settings()

        # From config file
        settings = Settings.from_file("config.toml")
    """

    model_config = SettingsConfigDict(
        env_prefix="BOOKMARK_SYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # GitHub credentials
    github_token: SecretStr = Field(
        default=SecretStr(""),
        description="GitHub personal access token with gist scope",
    )
    gist_id: str = Field(
        default="",
        description="Gist holding the sync document (empty = create on first sync)",
    )
    api_url: str = Field(
        default="https://api.github.com",
        description="GitHub API base URL",
    )
    file_name: str = Field(
        default="bookmarks.json",
        description="File inside the gist that holds the document",
    )

    # Mock server (no token needed)
    use_mock_server: bool = Field(default=False)
    mock_server_url: str = Field(default="http://localhost:3000")

    device_name: str = Field(
        default_factory=lambda: platform.node() or "unknown",
        description="Display name of this replica in the document",
    )

    # Nested configs
    sync: SyncOptions = Field(default_factory=SyncOptions)
    store: StoreConfig = Field(default_factory=StoreConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("github_token", mode="before")
    @classmethod
    def validate_token(cls, v: Any) -> SecretStr:
        """Handle token from various sources."""
        if isinstance(v, SecretStr):
            return v
        if isinstance(v, str):
            return SecretStr(v.strip())
        return SecretStr("")

    @classmethod
    def from_file(cls, path: Path | str) -> "Settings":
        """Load settings from a TOML or JSON config file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = path.read_text()

        if path.suffix in (".toml", ".tml"):
            data = tomllib.loads(content)
        elif path.suffix == ".json":
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")

        return cls.model_validate(data)

    def to_file(self, path: Path | str) -> None:
        """Save current settings to a config file."""
        path = Path(path)
        data = self.model_dump(mode="json", exclude_none=True)

        # Mask sensitive data
        if "github_token" in data:
            data["github_token"] = "***REDACTED***"

        if path.suffix in (".toml", ".tml"):
            # Basic TOML serialization
            lines = []
            for key, value in data.items():
                if not isinstance(value, dict):
                    lines.append(f"{key} = {json.dumps(value)}")
            for key, value in data.items():
                if isinstance(value, dict):
                    lines.append(f"\n[{key}]")
                    for k, v in value.items():
                        lines.append(f"{k} = {json.dumps(v)}")
            path.write_text("\n".join(lines) + "\n")
        else:
            path.write_text(json.dumps(data, indent=2))

    def validate_credentials(self) -> list[str]:
        """Validate that the remote location is usable. Returns list of errors."""
        errors = []
        if self.use_mock_server:
            if not self.mock_server_url:
                errors.append("mock_server_url is required when use_mock_server is set")
        elif not self.github_token.get_secret_value():
            errors.append("github_token is required")
        return errors

    def require_credentials(self) -> None:
        """Raise ConfigurationError if the remote location is unusable."""
        errors = self.validate_credentials()
        if errors:
            raise ConfigurationError(errors)


# Convenience function for loading settings
def load_settings(
    config_file: Path | str | None = None,
    **overrides: Any,
) -> Settings:
    """
    Load settings with optional config file and overrides.

    Args:
        config_file: Optional path to config file
        **overrides: Settings to override (highest priority)

    Returns:
        Configured Settings instance
    """
    if config_file:
        settings = Settings.from_file(config_file)
        if overrides:
            data = settings.model_dump()
            data.update(overrides)
            return Settings.model_validate(data)
        return settings
    return Settings(**overrides)
