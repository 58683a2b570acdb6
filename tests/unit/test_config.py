"""
Unit tests for configuration loading.
"""

import pytest

from desktop.workspace_store.config import (
    ObservabilityConfig,
    StorageConfig,
    WorkspaceStoreConfig,
)


class TestWorkspaceStoreConfig:
    """Tests for WorkspaceStoreConfig."""

    def test_defaults(self, monkeypatch):
        for name in (
            "WORKSPACE_SQLITE_BUSY_TIMEOUT_MS",
            "WORKSPACE_SQLITE_CACHE_SIZE",
            "WORKSPACE_SQLITE_SYNCHRONOUS",
            "WORKSPACE_SQLITE_CHECKPOINT_MODE",
            "WORKSPACE_DB_FILENAME",
            "LOG_LEVEL",
            "LOG_FORMAT",
        ):
            monkeypatch.delenv(name, raising=False)

        config = WorkspaceStoreConfig.from_env()

        assert config.storage == StorageConfig()
        assert config.storage.synchronous == "NORMAL"
        assert config.storage.checkpoint_mode == "TRUNCATE"
        assert config.observability == ObservabilityConfig()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("WORKSPACE_SQLITE_BUSY_TIMEOUT_MS", "250")
        monkeypatch.setenv("WORKSPACE_SQLITE_SYNCHRONOUS", "full")
        monkeypatch.setenv("WORKSPACE_SQLITE_CHECKPOINT_MODE", "passive")
        monkeypatch.setenv("WORKSPACE_DB_FILENAME", "store.db")
        monkeypatch.setenv("LOG_FORMAT", "TEXT")

        config = WorkspaceStoreConfig.from_env()

        assert config.storage.busy_timeout_ms == 250
        assert config.storage.synchronous == "FULL"
        assert config.storage.checkpoint_mode == "PASSIVE"
        assert config.storage.db_filename == "store.db"
        assert config.observability.log_format == "text"

    def test_invalid_synchronous(self, monkeypatch):
        monkeypatch.setenv("WORKSPACE_SQLITE_SYNCHRONOUS", "SOMETIMES")

        with pytest.raises(ValueError, match="WORKSPACE_SQLITE_SYNCHRONOUS"):
            WorkspaceStoreConfig.from_env()

    def test_invalid_checkpoint_mode(self):
        config = WorkspaceStoreConfig(storage=StorageConfig(checkpoint_mode="LAZY"))

        with pytest.raises(ValueError, match="CHECKPOINT_MODE"):
            config.validate()

    def test_non_positive_busy_timeout(self):
        config = WorkspaceStoreConfig(storage=StorageConfig(busy_timeout_ms=0))

        with pytest.raises(ValueError, match="BUSY_TIMEOUT"):
            config.validate()

    def test_empty_db_filename(self):
        config = WorkspaceStoreConfig(storage=StorageConfig(db_filename=""))

        with pytest.raises(ValueError):
            config.validate()

    def test_invalid_log_format(self):
        config = WorkspaceStoreConfig(observability=ObservabilityConfig(log_format="xml"))

        with pytest.raises(ValueError, match="LOG_FORMAT"):
            config.validate()
