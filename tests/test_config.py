"""Tests for configuration module."""

import json
from pathlib import Path

import pytest
from pydantic import SecretStr

from bookmark_sync.config import ConfigurationError, Settings, load_settings


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Test default settings creation."""
        settings = Settings()
        assert settings.api_url == "https://api.github.com"
        assert settings.file_name == "bookmarks.json"
        assert settings.use_mock_server is False
        assert settings.device_name

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test settings loading from environment variables."""
        monkeypatch.setenv("BOOKMARK_SYNC_GITHUB_TOKEN", "  ghp_test  ")
        monkeypatch.setenv("BOOKMARK_SYNC_GIST_ID", "abc123")
        monkeypatch.setenv("BOOKMARK_SYNC_SYNC__AUTO_SYNC", "false")

        settings = Settings()
        assert settings.github_token.get_secret_value() == "ghp_test"
        assert settings.gist_id == "abc123"
        assert settings.sync.auto_sync is False

    def test_settings_validate_credentials_missing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test credential validation with missing token."""
        monkeypatch.delenv("BOOKMARK_SYNC_GITHUB_TOKEN", raising=False)
        settings = Settings()
        errors = settings.validate_credentials()
        assert len(errors) == 1
        assert "github_token" in errors[0]

        with pytest.raises(ConfigurationError) as exc_info:
            settings.require_credentials()
        assert exc_info.value.errors == errors

    def test_settings_validate_credentials_complete(self) -> None:
        """Test credential validation with a token."""
        settings = Settings(github_token=SecretStr("ghp_test"))
        assert settings.validate_credentials() == []
        settings.require_credentials()

    def test_mock_server_needs_no_token(self) -> None:
        """Mock mode is usable without a token but needs a URL."""
        settings = Settings(use_mock_server=True, github_token="")
        assert settings.validate_credentials() == []

        settings.mock_server_url = ""
        assert any("mock_server_url" in e for e in settings.validate_credentials())

    def test_settings_to_file_json(self, tmp_path: Path) -> None:
        """Test saving settings to JSON file."""
        settings = Settings(github_token="ghp_secret", gist_id="abc123")
        output_path = tmp_path / "config.json"
        settings.to_file(output_path)

        data = json.loads(output_path.read_text())
        assert data["gist_id"] == "abc123"
        assert data["github_token"] == "***REDACTED***"
        assert "ghp_secret" not in output_path.read_text()

    def test_settings_round_trip_toml(self, tmp_path: Path) -> None:
        """A generated TOML file loads back into equivalent settings."""
        settings = Settings(gist_id="abc123", device_name="laptop")
        settings.sync.debounce_seconds = 4.5
        output_path = tmp_path / "config.toml"
        settings.to_file(output_path)

        loaded = load_settings(output_path)
        assert loaded.gist_id == "abc123"
        assert loaded.device_name == "laptop"
        assert loaded.sync.debounce_seconds == 4.5

    def test_load_settings_overrides(self, tmp_path: Path) -> None:
        """Overrides win over config file values."""
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"gist_id": "from-file", "file_name": "a.json"}))

        settings = load_settings(config_path, gist_id="from-override")
        assert settings.gist_id == "from-override"
        assert settings.file_name == "a.json"

    def test_unsupported_config_format(self, tmp_path: Path) -> None:
        """Unknown suffixes are rejected."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("gist_id: x\n")
        with pytest.raises(ValueError):
            Settings.from_file(config_path)


class TestSyncOptions:
    """Test SyncOptions class."""

    def test_default_sync_options(self) -> None:
        """Test default sync options."""
        settings = Settings()
        assert settings.sync.auto_sync is True
        assert settings.sync.sync_on_startup is True
        assert settings.sync.debounce_seconds == 2.0
        assert settings.sync.startup_delay_seconds == 5.0
        assert settings.sync.dry_run is False

    def test_sync_options_modification(self) -> None:
        """Test modifying sync options."""
        settings = Settings()
        settings.sync.dry_run = True
        settings.sync.auto_sync = False

        assert settings.sync.dry_run is True
        assert settings.sync.auto_sync is False

    def test_negative_debounce_rejected(self) -> None:
        """Negative windows are invalid."""
        with pytest.raises(ValueError):
            Settings.model_validate({"sync": {"debounce_seconds": -1}})
