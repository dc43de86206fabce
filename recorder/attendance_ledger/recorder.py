"""
Attendance recorder: presence events in, queued ledger writes out.

The AttendanceRecorder consumes PresenceEvents from the source and feeds
the two single-writer queues. It ensures:
- Entries enqueue an identity sync and an attendance record
- Exits enqueue an attendance record only
- Events whose connection has no identity are dropped with a warning
- A dropped source connection is re-established; missed events are not
  backfilled

Invariants:
    - Events are enqueued in the order the source delivers them
    - The consuming loop never awaits a store call
    - Queue failures never stop event consumption
    - Every SourceUnavailable is followed by a fresh connect()

How to change safely:
    - Keep store work inside queue handlers, never in handle_event()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .ledger.append_engine import AppendEngine, AppendResult, AttendanceRecord
from .ledger.identity_engine import IdentityUpsertEngine, UpsertResult
from .ledger.presence import IdentityUnresolved, PresenceResolver
from .source.base import EventKind, PresenceEvent, PresenceSource, SourceUnavailable
from .writer.dead_letter import DeadLetter, DeadLetterSink, LoggingDeadLetterSink
from .writer.queue import QueueError, SingleWriterQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdentitySyncTask:
    """Identity sync request queued on entry.

    Attributes:
        identity_id: Identity whose display name should be synced
    """

    identity_id: str


@dataclass(frozen=True)
class EventLabels:
    """Labels written to the event column."""

    enter: str = "入室"
    exit: str = "退室"

    def for_kind(self, kind: EventKind) -> str:
        return self.enter if kind == EventKind.ENTER else self.exit


class AttendanceRecorder:
    """Routes presence events onto the identity and append queues.

    Thread safety:
        Designed to run as a single task; the queues it owns each run
        their own worker task.

    Example:
        >>> recorder = AttendanceRecorder(source, resolver, append_engine, identity_engine)
        >>> await recorder.start()  # Runs until stopped
    """

    def __init__(
        self,
        source: PresenceSource,
        resolver: PresenceResolver,
        append_engine: AppendEngine,
        identity_engine: IdentityUpsertEngine,
        labels: EventLabels | None = None,
        max_backlog: int = 0,
        dead_letter: DeadLetterSink | None = None,
        reconnect_delay: float = 1.0,
    ) -> None:
        """Initialize the recorder.

        Args:
            source: Presence event source
            resolver: Presence resolver over the same source
            append_engine: Engine behind the append queue
            identity_engine: Engine behind the identity queue
            labels: Event column labels
            max_backlog: Backlog limit per queue (0 = unbounded)
            dead_letter: Sink for failed or rejected tasks
            reconnect_delay: Seconds to wait before reconnecting the source
        """
        self.source = source
        self.resolver = resolver
        self.append_engine = append_engine
        self.identity_engine = identity_engine
        self.labels = labels or EventLabels()
        self.dead_letter = dead_letter or LoggingDeadLetterSink()
        self.reconnect_delay = reconnect_delay

        self.append_queue: SingleWriterQueue[AttendanceRecord] = SingleWriterQueue(
            "append", self._append, max_backlog=max_backlog, dead_letter=self.dead_letter
        )
        self.identity_queue: SingleWriterQueue[IdentitySyncTask] = SingleWriterQueue(
            "identity", self._sync_identity, max_backlog=max_backlog, dead_letter=self.dead_letter
        )

        self._running = False
        self._event_count = 0
        self._dropped_count = 0
        self._reconnect_count = 0

    async def start(self) -> None:
        """Start the queues and consume events until stop() is called."""
        if self._running:
            logger.warning("Recorder already running")
            return

        self._running = True
        await self.append_queue.start()
        await self.identity_queue.start()
        logger.info("Starting attendance recorder")

        needs_connect = not self.source.is_connected
        try:
            while self._running:
                try:
                    if needs_connect:
                        await self.source.connect()
                        needs_connect = False
                        logger.info("Presence source connected")
                    async for event in self.source.events():
                        if not self._running:
                            break
                        await self.handle_event(event)
                    else:
                        # Source ended the stream without an error
                        break
                except SourceUnavailable as e:
                    if not self._running:
                        break
                    needs_connect = True
                    self._reconnect_count += 1
                    logger.warning(
                        f"Presence source disconnected, reconnecting: {e}",
                        extra={"delay_s": self.reconnect_delay, "attempt": self._reconnect_count},
                    )
                    await asyncio.sleep(self.reconnect_delay)

        except asyncio.CancelledError:
            logger.info("Recorder cancelled")
        except Exception as e:
            logger.error(f"Recorder error: {e}", exc_info=True)
            raise

        finally:
            self._running = False

    async def stop(self, drain: bool = False) -> None:
        """Stop consuming and shut down both queues."""
        self._running = False
        await self.append_queue.stop(drain=drain)
        await self.identity_queue.stop(drain=drain)
        logger.info(
            "Stopping recorder",
            extra={"events": self._event_count, "dropped": self._dropped_count},
        )

    async def handle_event(self, event: PresenceEvent) -> None:
        """Route one presence event onto the queues."""
        self._event_count += 1
        logger.debug(
            "Presence event",
            extra={"kind": event.kind.value, "connection_id": event.connection_id},
        )

        try:
            identity_id = self.resolver.resolve_identity_id(event.connection_id)
        except IdentityUnresolved as e:
            self._dropped_count += 1
            logger.warning(str(e), extra={"kind": event.kind.value})
            return

        record = AttendanceRecord(
            identity_id=identity_id,
            timestamp=event.timestamp,
            event_label=self.labels.for_kind(event.kind),
        )
        if event.kind == EventKind.ENTER:
            await self._push(self.identity_queue, IdentitySyncTask(identity_id))
        await self._push(self.append_queue, record)

    def stats(self) -> dict:
        return {
            "events": self._event_count,
            "dropped": self._dropped_count,
            "reconnects": self._reconnect_count,
            "append_queue": self.append_queue.stats(),
            "identity_queue": self.identity_queue.stats(),
        }

    async def _push(self, queue: SingleWriterQueue, task: object) -> None:
        try:
            queue.push(task)
        except QueueError as e:
            self._dropped_count += 1
            logger.error(f"Task rejected: {e}", extra={"queue": queue.name})
            await self.dead_letter.put(DeadLetter.from_exception(queue.name, task, e))

    async def _append(self, record: AttendanceRecord) -> AppendResult:
        logger.info(
            "Appending attendance",
            extra={"identity_id": record.identity_id, "event": record.event_label},
        )
        return await self.append_engine.append(record)

    async def _sync_identity(self, task: IdentitySyncTask) -> UpsertResult:
        logger.info("Syncing identity", extra={"identity_id": task.identity_id})
        identity = await self.resolver.resolve_identity(task.identity_id)
        return await self.identity_engine.upsert(identity.id, identity.display_name)
