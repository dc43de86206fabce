"""
Configuration management for the attendance ledger.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - Non-secret settings have sensible defaults for local development
    - Credentials and identifiers have no defaults and are checked eagerly
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Document new settings in the Attributes of their section class
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_FACTORY = "recorder.attendance_ledger.source.memory:InMemoryPresenceSource"


class StoreBackend(Enum):
    """Supported tabular store backends."""

    GSHEETS = "gsheets"
    MEMORY = "memory"


def _optional_float(name: str) -> float | None:
    raw = os.getenv(name)
    return float(raw) if raw else None


@dataclass(frozen=True)
class PresenceConfig:
    """Presence source and resolver configuration.

    Attributes:
        api_key: API key for the virtual-space provider
        space_id: Space/session identifier to observe
        source_factory: ``module:attr`` of the PresenceSource factory
        poll_interval_ms: Delay between identity lookups
        max_attempts: Lookups before giving up on an identity
        timeout_seconds: Overall bound on one identity wait (None = only attempts)
        reconnect_delay_ms: Delay before reconnecting a dropped source
    """

    api_key: str = ""
    space_id: str = ""
    source_factory: str = DEFAULT_SOURCE_FACTORY
    poll_interval_ms: int = 1000
    max_attempts: int = 300
    timeout_seconds: float | None = None
    reconnect_delay_ms: int = 1000

    @classmethod
    def from_env(cls) -> PresenceConfig:
        """Load configuration from environment variables."""
        return cls(
            api_key=os.getenv("GATHER_API_KEY", ""),
            space_id=os.getenv("GATHER_SPACE_ID", ""),
            source_factory=os.getenv("PRESENCE_SOURCE_FACTORY", DEFAULT_SOURCE_FACTORY),
            poll_interval_ms=int(os.getenv("PRESENCE_POLL_INTERVAL_MS", "1000")),
            max_attempts=int(os.getenv("PRESENCE_MAX_ATTEMPTS", "300")),
            timeout_seconds=_optional_float("PRESENCE_TIMEOUT_SECONDS"),
            reconnect_delay_ms=int(os.getenv("PRESENCE_RECONNECT_DELAY_MS", "1000")),
        )


@dataclass(frozen=True)
class SheetsConfig:
    """Google Sheets backend configuration.

    Attributes:
        spreadsheet_id: Spreadsheet key from its URL
        service_account_email: Service account client email
        private_key: Service account PEM private key
    """

    spreadsheet_id: str = ""
    service_account_email: str = ""
    private_key: str = field(default="", repr=False)

    @classmethod
    def from_env(cls) -> SheetsConfig:
        """Load configuration from environment variables.

        Escaped newlines in GOOGLE_PRIVATE_KEY are expanded, since most
        secret stores flatten the PEM block into one line.
        """
        return cls(
            spreadsheet_id=os.getenv("GOOGLE_SPREAD_SHEET_ID", ""),
            service_account_email=os.getenv("GOOGLE_SERVICE_ACCOUNT_EMAIL", ""),
            private_key=os.getenv("GOOGLE_PRIVATE_KEY", "").replace("\\n", "\n"),
        )


@dataclass(frozen=True)
class LedgerConfig:
    """Ledger layout configuration.

    Attributes:
        timezone: IANA zone used for partition keys and timestamps
        grow_block_rows: Rows added when a scan runs past the sheet
        columns: Column count of attendance partitions
        identity_table: Title of the identity table
        identity_columns: Column count of the identity table
        enter_label: Label written for entries
        exit_label: Label written for exits
    """

    timezone: str = "Asia/Tokyo"
    grow_block_rows: int = 1000
    columns: int = 3
    identity_table: str = "ユーザーマスタ"
    identity_columns: int = 2
    enter_label: str = "入室"
    exit_label: str = "退室"

    @classmethod
    def from_env(cls) -> LedgerConfig:
        """Load configuration from environment variables."""
        return cls(
            timezone=os.getenv("LEDGER_TIMEZONE", "Asia/Tokyo"),
            grow_block_rows=int(os.getenv("LEDGER_GROW_BLOCK_ROWS", "1000")),
            columns=int(os.getenv("LEDGER_COLUMNS", "3")),
            identity_table=os.getenv("LEDGER_IDENTITY_TABLE", "ユーザーマスタ"),
            identity_columns=int(os.getenv("LEDGER_IDENTITY_COLUMNS", "2")),
            enter_label=os.getenv("LEDGER_ENTER_LABEL", "入室"),
            exit_label=os.getenv("LEDGER_EXIT_LABEL", "退室"),
        )


@dataclass(frozen=True)
class QueueConfig:
    """Single-writer queue configuration.

    Attributes:
        max_backlog: Maximum queued tasks per queue (0 = unbounded)
        dead_letter_path: JSONL file for failed tasks (None = log only)
    """

    max_backlog: int = 0
    dead_letter_path: str | None = None

    @classmethod
    def from_env(cls) -> QueueConfig:
        """Load configuration from environment variables."""
        return cls(
            max_backlog=int(os.getenv("QUEUE_MAX_BACKLOG", "0")),
            dead_letter_path=os.getenv("DEAD_LETTER_PATH") or None,
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
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class RecorderConfig:
    """Complete recorder configuration.

    Attributes:
        store_backend: Which tabular store backend to use
        presence: Presence source and resolver configuration
        sheets: Google Sheets configuration
        ledger: Ledger layout configuration
        queue: Queue configuration
        observability: Logging configuration
    """

    store_backend: StoreBackend = StoreBackend.GSHEETS
    presence: PresenceConfig = field(default_factory=PresenceConfig)
    sheets: SheetsConfig = field(default_factory=SheetsConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> RecorderConfig:
        """Load complete configuration from environment variables.

        Returns:
            RecorderConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("STORE_BACKEND", "gsheets").lower()
        try:
            store_backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(f"Invalid STORE_BACKEND '{backend_str}'. Must be one of: gsheets, memory")

        config = cls(
            store_backend=store_backend,
            presence=PresenceConfig.from_env(),
            sheets=SheetsConfig.from_env(),
            ledger=LedgerConfig.from_env(),
            queue=QueueConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        missing = []
        if not self.presence.api_key:
            missing.append("GATHER_API_KEY")
        if not self.presence.space_id:
            missing.append("GATHER_SPACE_ID")
        if self.store_backend == StoreBackend.GSHEETS:
            if not self.sheets.spreadsheet_id:
                missing.append("GOOGLE_SPREAD_SHEET_ID")
            if not self.sheets.service_account_email:
                missing.append("GOOGLE_SERVICE_ACCOUNT_EMAIL")
            if not self.sheets.private_key:
                missing.append("GOOGLE_PRIVATE_KEY")
        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

        if self.ledger.grow_block_rows < 1:
            raise ValueError("LEDGER_GROW_BLOCK_ROWS must be positive")
        if self.ledger.columns < 3:
            raise ValueError("LEDGER_COLUMNS must be at least 3")
        if self.ledger.identity_columns < 2:
            raise ValueError("LEDGER_IDENTITY_COLUMNS must be at least 2")
        if self.presence.max_attempts < 1:
            raise ValueError("PRESENCE_MAX_ATTEMPTS must be positive")
        if self.queue.max_backlog < 0:
            raise ValueError("QUEUE_MAX_BACKLOG must not be negative")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Recorder configuration loaded",
            extra={
                "store_backend": self.store_backend.value,
                "space_id": self.presence.space_id,
                "source_factory": self.presence.source_factory,
                "spreadsheet_id": self.sheets.spreadsheet_id
                if self.store_backend == StoreBackend.GSHEETS
                else None,
                "timezone": self.ledger.timezone,
                "identity_table": self.ledger.identity_table,
                "max_backlog": self.queue.max_backlog,
                "dead_letter_path": self.queue.dead_letter_path,
                "log_level": self.observability.log_level,
            },
        )
