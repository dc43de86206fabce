"""
Single-writer task queue.

Each queue admits tasks in arrival order and runs exactly one at a time on
a single worker task. This is the only mutual exclusion the ledger relies
on: the store offers no multi-cell transactions, so "find first empty row,
then write it" is race-free only because one queue owns each table.

Invariants:
    - Tasks start in submission order (FIFO)
    - At most one task is in flight per queue
    - A failed task becomes a failed TaskOutcome, is handed to the
      dead-letter sink, and never blocks the tasks behind it
    - Tasks are never retried or requeued

How to change safely:
    - Keep one worker per queue; adding workers breaks row allocation
    - Watch QueueStats.backlog when the store slows down
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from .dead_letter import DeadLetter, DeadLetterSink, LoggingDeadLetterSink

logger = logging.getLogger(__name__)

T = TypeVar("T")


class QueueError(Exception):
    """Base exception for queue operations."""

    pass


class QueueFull(QueueError):
    """Backlog limit reached."""

    pass


class QueueClosed(QueueError):
    """Queue is not accepting tasks."""

    pass


@dataclass
class TaskOutcome(Generic[T]):
    """Result of running one queued task.

    Attributes:
        task: The task
        success: Whether the handler completed
        result: Handler return value on success
        error: Exception raised by the handler on failure
    """

    task: T
    success: bool
    result: Any = None
    error: BaseException | None = None


@dataclass(frozen=True)
class QueueStats:
    """Point-in-time queue counters.

    Attributes:
        name: Queue name
        submitted: Tasks accepted
        completed: Tasks that succeeded
        failed: Tasks that failed
        rejected: Tasks refused because the backlog was full
        backlog: Tasks waiting to start
        in_flight: Whether a task is running now
    """

    name: str
    submitted: int
    completed: int
    failed: int
    rejected: int
    backlog: int
    in_flight: bool


class SingleWriterQueue(Generic[T]):
    """FIFO queue drained by exactly one worker.

    Example:
        >>> queue = SingleWriterQueue("append", engine.append)
        >>> await queue.start()
        >>> queue.push(record)
        >>> await queue.join()
        >>> await queue.stop()
    """

    def __init__(
        self,
        name: str,
        handler: Callable[[T], Awaitable[Any]],
        max_backlog: int = 0,
        dead_letter: DeadLetterSink | None = None,
        on_outcome: Callable[[TaskOutcome[T]], None] | None = None,
    ) -> None:
        """Initialize the queue.

        Args:
            name: Queue name for logs and dead letters
            handler: Coroutine function run for each task
            max_backlog: Maximum waiting tasks (0 = unbounded)
            dead_letter: Sink for failed tasks (defaults to logging)
            on_outcome: Optional callback invoked with every outcome
        """
        self.name = name
        self.handler = handler
        self.max_backlog = max_backlog
        self.dead_letter = dead_letter or LoggingDeadLetterSink()
        self.on_outcome = on_outcome

        self._queue: asyncio.Queue[T] = asyncio.Queue(maxsize=max_backlog)
        self._worker: asyncio.Task | None = None
        self._accepting = False
        self._in_flight = False
        self._submitted = 0
        self._completed = 0
        self._failed = 0
        self._rejected = 0

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        """Start the worker."""
        if self.is_running:
            logger.warning("Queue already running", extra={"queue": self.name})
            return

        self._accepting = True
        self._worker = asyncio.create_task(self._run(), name=f"queue-{self.name}")
        logger.info("Queue started", extra={"queue": self.name, "max_backlog": self.max_backlog})

    async def stop(self, drain: bool = False) -> None:
        """Stop the worker.

        Args:
            drain: Wait for queued tasks to finish first. Otherwise the
                in-flight task is cancelled and waiting tasks are dropped.
        """
        self._accepting = False
        if drain and self.is_running:
            await self._queue.join()

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            dropped += 1

        logger.info("Queue stopped", extra={"queue": self.name, "dropped": dropped})

    def push(self, task: T) -> None:
        """Enqueue ``task`` without waiting.

        Raises:
            QueueClosed: If the queue is not running
            QueueFull: If the backlog limit is reached
        """
        if not self._accepting:
            raise QueueClosed(f"Queue {self.name} is not accepting tasks")
        try:
            self._queue.put_nowait(task)
        except asyncio.QueueFull:
            self._rejected += 1
            raise QueueFull(f"Queue {self.name} backlog limit {self.max_backlog} reached") from None
        self._submitted += 1

    async def submit(self, task: T) -> None:
        """Enqueue ``task``, waiting for backlog space.

        Raises:
            QueueClosed: If the queue is not running
        """
        if not self._accepting:
            raise QueueClosed(f"Queue {self.name} is not accepting tasks")
        await self._queue.put(task)
        self._submitted += 1

    async def join(self) -> None:
        """Wait until every accepted task has been processed."""
        await self._queue.join()

    def stats(self) -> QueueStats:
        return QueueStats(
            name=self.name,
            submitted=self._submitted,
            completed=self._completed,
            failed=self._failed,
            rejected=self._rejected,
            backlog=self._queue.qsize(),
            in_flight=self._in_flight,
        )

    async def _run(self) -> None:
        while True:
            task = await self._queue.get()
            self._in_flight = True
            try:
                outcome = await self._execute(task)
                if self.on_outcome is not None:
                    self.on_outcome(outcome)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Sink or callback failure; the worker must outlive it
                logger.error(f"Queue {self.name} bookkeeping error: {e}", exc_info=True)
            finally:
                self._in_flight = False
                self._queue.task_done()

    async def _execute(self, task: T) -> TaskOutcome[T]:
        try:
            result = await self.handler(task)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failed += 1
            logger.error(
                f"Task failed in queue {self.name}: {e}",
                exc_info=True,
                extra={"queue": self.name, "error_type": type(e).__name__},
            )
            await self.dead_letter.put(DeadLetter.from_exception(self.name, task, e))
            return TaskOutcome(task=task, success=False, error=e)

        self._completed += 1
        return TaskOutcome(task=task, success=True, result=result)
