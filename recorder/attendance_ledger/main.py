"""
Attendance ledger - main entry point.

This module starts the recorder with all components:
- Tabular store connection (Google Sheets or in-memory)
- Presence source connection
- Append and identity single-writer queues
- The event consuming loop

Usage:
    python -m recorder.attendance_ledger.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Configuration is validated before anything connects
    - The store is connected before the first event is consumed
    - Shutdown stops consumption before closing the store
    - The service exits when the recorder task ends, re-raising its error

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from zoneinfo import ZoneInfo

import json_log_formatter

from .config import RecorderConfig
from .ledger import (
    AppendEngine,
    IdentityUpsertEngine,
    PartitionResolver,
    PresenceResolver,
    RowCursorCache,
)
from .recorder import AttendanceRecorder, EventLabels
from .source import PresenceSource, create_presence_source
from .store import TabularStore, create_tabular_store
from .writer import create_dead_letter_sink

logger = logging.getLogger(__name__)


def setup_logging(config: RecorderConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Recorder configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("google.auth").setLevel(logging.WARNING)
    logging.getLogger("gspread").setLevel(logging.WARNING)


class RecorderService:
    """Recorder orchestrator.

    Manages the lifecycle of all components:
    - Store and source connections
    - Ledger engines and their queues
    - The recorder loop

    Example:
        >>> service = RecorderService(config)
        >>> await service.start()
        >>> # Service is running
        >>> await service.stop()
    """

    def __init__(
        self,
        config: RecorderConfig | None = None,
        store: TabularStore | None = None,
        source: PresenceSource | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            config: Optional configuration (loaded from env if not provided)
            store: Optional store (created from config if not provided)
            source: Optional presence source (created from config if not provided)
        """
        self.config = config or RecorderConfig.from_env()
        self.store = store
        self.source = source
        self.recorder: AttendanceRecorder | None = None

        self._running = False
        self._shutdown_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    def build(self) -> AttendanceRecorder:
        """Wire engines, queues and recorder from configuration."""
        ledger = self.config.ledger
        presence = self.config.presence
        if self.store is None:
            self.store = create_tabular_store(self.config)
        if self.source is None:
            self.source = create_presence_source(presence)

        resolver = PartitionResolver(
            self.store,
            ZoneInfo(ledger.timezone),
            grow_block_rows=ledger.grow_block_rows,
            columns=ledger.columns,
        )
        self.recorder = AttendanceRecorder(
            source=self.source,
            resolver=PresenceResolver(
                self.source,
                poll_interval=presence.poll_interval_ms / 1000.0,
                max_attempts=presence.max_attempts,
                timeout=presence.timeout_seconds,
            ),
            append_engine=AppendEngine(resolver, RowCursorCache()),
            identity_engine=IdentityUpsertEngine(
                resolver, ledger.identity_table, columns=ledger.identity_columns
            ),
            labels=EventLabels(enter=ledger.enter_label, exit=ledger.exit_label),
            max_backlog=self.config.queue.max_backlog,
            dead_letter=create_dead_letter_sink(self.config.queue.dead_letter_path),
            reconnect_delay=presence.reconnect_delay_ms / 1000.0,
        )
        return self.recorder

    async def start(self) -> None:
        """Start the service and wait for a shutdown request."""
        if self._running:
            logger.warning("Service already running")
            return

        logger.info("Starting attendance ledger")
        self.config.log_config()

        try:
            recorder = self.recorder or self.build()

            await self.store.connect()
            logger.info("Tabular store connected")

            await self.source.connect()
            logger.info("Presence source connected")

            recorder_task = asyncio.create_task(recorder.start())
            self._tasks.append(recorder_task)
            self._running = True
            logger.info("Attendance ledger started successfully")

            shutdown_task = asyncio.create_task(self._shutdown_event.wait())
            try:
                await asyncio.wait(
                    {recorder_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                shutdown_task.cancel()

            if recorder_task.done() and not recorder_task.cancelled():
                error = recorder_task.exception()
                if error is not None:
                    raise error
                logger.warning("Presence stream ended, shutting down")

        except Exception as e:
            logger.error(f"Service failed: {e}", exc_info=True)
            self._running = True
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the service gracefully."""
        if not self._running:
            return

        logger.info("Stopping attendance ledger")

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self.recorder:
            await self.recorder.stop()
            logger.info("Recorder stats", extra={"stats": str(self.recorder.stats())})

        if self.source:
            await self.source.close()

        if self.store:
            await self.store.close()

        self._running = False
        logger.info("Attendance ledger stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = RecorderConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    service = RecorderService(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        service.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    exit_code = 0
    try:
        loop.run_until_complete(service.start())
    except KeyboardInterrupt:
        pass
    except Exception:
        exit_code = 1
    finally:
        loop.run_until_complete(service.stop())
        loop.close()

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
