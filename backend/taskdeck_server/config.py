"""
Configuration management for Taskdeck Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for critical settings
    - A lexical search hit must always outrank a trigram-only hit
      (trigram_weight <= lexical_base)

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
    - Keep defaults here and in the admin CLI help text in sync
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory for the SQLite database
        database_file: Database file name inside data_dir
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "/var/lib/taskdeck"
    database_file: str = "taskdeck.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/taskdeck"),
            database_file=os.getenv("DATABASE_FILE", "taskdeck.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )

    @property
    def database_path(self) -> Path:
        return Path(self.data_dir) / self.database_file


@dataclass(frozen=True)
class OrderingConfig:
    """Ordering engine configuration.

    Attributes:
        stride: Spacing between positions after a rebalance of a gapped collection
        max_retries: Attempts for a contended position write before giving up
        retry_delay_ms: Delay between attempts
    """

    stride: int = 1000
    max_retries: int = 3
    retry_delay_ms: int = 25

    @classmethod
    def from_env(cls) -> OrderingConfig:
        """Load configuration from environment variables."""
        return cls(
            stride=int(os.getenv("ORDERING_STRIDE", "1000")),
            max_retries=int(os.getenv("ORDERING_MAX_RETRIES", "3")),
            retry_delay_ms=int(os.getenv("ORDERING_RETRY_DELAY_MS", "25")),
        )


@dataclass(frozen=True)
class SearchConfig:
    """Hybrid search ranking configuration.

    Attributes:
        lexical_base: Score floor granted to any full-text hit
        lexical_weight: Weight of the normalised full-text relevance
        trigram_weight: Weight of the trigram similarity
        trigram_threshold: Minimum trigram similarity for a fuzzy-only hit
        default_limit: Page size when the caller gives none
        max_limit: Largest page size accepted
    """

    lexical_base: float = 1.0
    lexical_weight: float = 0.7
    trigram_weight: float = 0.3
    trigram_threshold: float = 0.3
    default_limit: int = 20
    max_limit: int = 100

    @classmethod
    def from_env(cls) -> SearchConfig:
        """Load configuration from environment variables."""
        return cls(
            lexical_base=float(os.getenv("SEARCH_LEXICAL_BASE", "1.0")),
            lexical_weight=float(os.getenv("SEARCH_LEXICAL_WEIGHT", "0.7")),
            trigram_weight=float(os.getenv("SEARCH_TRIGRAM_WEIGHT", "0.3")),
            trigram_threshold=float(os.getenv("SEARCH_TRIGRAM_THRESHOLD", "0.3")),
            default_limit=int(os.getenv("SEARCH_DEFAULT_LIMIT", "20")),
            max_limit=int(os.getenv("SEARCH_MAX_LIMIT", "100")),
        )


@dataclass(frozen=True)
class InviteConfig:
    """Invitation configuration.

    Attributes:
        ttl_hours: Hours an invitation stays acceptable
        token_bytes: Entropy of generated invitation tokens
    """

    ttl_hours: int = 168  # 7 days
    token_bytes: int = 32

    @classmethod
    def from_env(cls) -> InviteConfig:
        """Load configuration from environment variables."""
        return cls(
            ttl_hours=int(os.getenv("INVITE_TTL_HOURS", "168")),
            token_bytes=int(os.getenv("INVITE_TOKEN_BYTES", "32")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Observability and logging configuration.

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
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    This aggregates all configuration sections and provides validation.

    Attributes:
        storage: Local storage configuration
        ordering: Ordering engine configuration
        search: Search ranking configuration
        invites: Invitation configuration
        observability: Observability configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    ordering: OrderingConfig = field(default_factory=OrderingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    invites: InviteConfig = field(default_factory=InviteConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            ordering=OrderingConfig.from_env(),
            search=SearchConfig.from_env(),
            invites=InviteConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.ordering.stride < 2:
            raise ValueError("ORDERING_STRIDE must be at least 2")
        if self.ordering.max_retries < 1:
            raise ValueError("ORDERING_MAX_RETRIES must be at least 1")
        if self.ordering.retry_delay_ms < 0:
            raise ValueError("ORDERING_RETRY_DELAY_MS must not be negative")

        search = self.search
        if search.trigram_weight > search.lexical_base:
            raise ValueError(
                "SEARCH_TRIGRAM_WEIGHT must not exceed SEARCH_LEXICAL_BASE "
                "or fuzzy-only hits could outrank full-text hits"
            )
        if min(search.lexical_base, search.lexical_weight, search.trigram_weight) < 0:
            raise ValueError("Search weights must not be negative")
        if not 0.0 <= search.trigram_threshold <= 1.0:
            raise ValueError("SEARCH_TRIGRAM_THRESHOLD must be within [0, 1]")
        if not 0 < search.default_limit <= search.max_limit:
            raise ValueError("SEARCH_DEFAULT_LIMIT must be within (0, SEARCH_MAX_LIMIT]")

        if self.invites.ttl_hours <= 0:
            raise ValueError("INVITE_TTL_HOURS must be positive")
        if self.invites.token_bytes < 16:
            raise ValueError("INVITE_TOKEN_BYTES must be at least 16")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration summary."""
        logger.info(
            "Server configuration loaded",
            extra={
                "database_path": str(self.storage.database_path),
                "wal_mode": self.storage.wal_mode,
                "ordering_stride": self.ordering.stride,
                "ordering_max_retries": self.ordering.max_retries,
                "search_weights": (
                    self.search.lexical_base,
                    self.search.lexical_weight,
                    self.search.trigram_weight,
                ),
                "invite_ttl_hours": self.invites.ttl_hours,
                "log_level": self.observability.log_level,
            },
        )
