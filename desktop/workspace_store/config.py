"""
Configuration management for the workspace store.

All configuration is done via environment variables of the host process.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for a desktop install
    - WAL journal mode and foreign keys are always on and not configurable
    - validate() rejects values SQLite would silently ignore

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep environment variable names stable
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

SYNCHRONOUS_LEVELS = ("OFF", "NORMAL", "FULL", "EXTRA")
CHECKPOINT_MODES = ("PASSIVE", "FULL", "RESTART", "TRUNCATE")
LOG_FORMATS = ("json", "text")


@dataclass(frozen=True)
class StorageConfig:
    """Per-workspace SQLite configuration.

    Attributes:
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
        synchronous: PRAGMA synchronous level; NORMAL trades the last few
            transactions on power loss for throughput
        checkpoint_mode: wal_checkpoint mode used when closing
        db_filename: Database file name inside a workspace folder
    """

    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB
    synchronous: str = "NORMAL"
    checkpoint_mode: str = "TRUNCATE"
    db_filename: str = "workspace.db"

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            busy_timeout_ms=int(os.getenv("WORKSPACE_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("WORKSPACE_SQLITE_CACHE_SIZE", "-64000")),
            synchronous=os.getenv("WORKSPACE_SQLITE_SYNCHRONOUS", "NORMAL").upper(),
            checkpoint_mode=os.getenv("WORKSPACE_SQLITE_CHECKPOINT_MODE", "TRUNCATE").upper(),
            db_filename=os.getenv("WORKSPACE_DB_FILENAME", "workspace.db"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
        )


@dataclass
class WorkspaceStoreConfig:
    """Complete workspace store configuration.

    Attributes:
        storage: SQLite configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> WorkspaceStoreConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.storage.synchronous not in SYNCHRONOUS_LEVELS:
            raise ValueError(
                f"Invalid WORKSPACE_SQLITE_SYNCHRONOUS '{self.storage.synchronous}'. "
                f"Must be one of: {', '.join(SYNCHRONOUS_LEVELS)}"
            )
        if self.storage.checkpoint_mode not in CHECKPOINT_MODES:
            raise ValueError(
                f"Invalid WORKSPACE_SQLITE_CHECKPOINT_MODE '{self.storage.checkpoint_mode}'. "
                f"Must be one of: {', '.join(CHECKPOINT_MODES)}"
            )
        if self.storage.busy_timeout_ms <= 0:
            raise ValueError("WORKSPACE_SQLITE_BUSY_TIMEOUT_MS must be positive")
        if not self.storage.db_filename:
            raise ValueError("WORKSPACE_DB_FILENAME must not be empty")
        if self.observability.log_format not in LOG_FORMATS:
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "Workspace store configuration loaded",
            extra={
                "busy_timeout_ms": self.storage.busy_timeout_ms,
                "cache_size_pages": self.storage.cache_size_pages,
                "synchronous": self.storage.synchronous,
                "checkpoint_mode": self.storage.checkpoint_mode,
                "db_filename": self.storage.db_filename,
                "log_level": self.observability.log_level,
                "log_format": self.observability.log_format,
            },
        )
