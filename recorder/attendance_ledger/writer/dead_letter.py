"""
Dead-letter sinks for failed queue tasks.

A failed task is never retried or requeued. The queue hands it to a sink
and moves on, so the policy for what happens to lost records lives here
and can be swapped without touching the queues.

Sinks:
    - LoggingDeadLetterSink: log and forget (default)
    - InMemoryDeadLetterSink: keep letters in a list (tests, inspection)
    - JsonlDeadLetterSink: append one JSON line per letter to a file
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeadLetter:
    """A task that failed at the queue boundary.

    Attributes:
        queue: Name of the queue the task came from
        task: The failed task
        error_type: Exception class name
        error: Exception message
        failed_at_ms: Failure time (Unix ms)
    """

    queue: str
    task: Any
    error_type: str
    error: str
    failed_at_ms: int

    @classmethod
    def from_exception(cls, queue: str, task: Any, exc: BaseException) -> DeadLetter:
        return cls(
            queue=queue,
            task=task,
            error_type=type(exc).__name__,
            error=str(exc),
            failed_at_ms=int(time.time() * 1000),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "queue": self.queue,
            "task": _jsonable(self.task),
            "error_type": self.error_type,
            "error": self.error,
            "failed_at_ms": self.failed_at_ms,
        }


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return repr(value)


@runtime_checkable
class DeadLetterSink(Protocol):
    """Receives tasks that failed at the queue boundary."""

    async def put(self, letter: DeadLetter) -> None:
        ...


class LoggingDeadLetterSink:
    """Logs dead letters and drops them."""

    async def put(self, letter: DeadLetter) -> None:
        logger.warning("Task discarded", extra=letter.to_dict())


class InMemoryDeadLetterSink:
    """Keeps dead letters in memory."""

    def __init__(self) -> None:
        self.letters: list[DeadLetter] = []

    async def put(self, letter: DeadLetter) -> None:
        self.letters.append(letter)

    def __len__(self) -> int:
        return len(self.letters)


class JsonlDeadLetterSink:
    """Appends dead letters to a JSONL file.

    One self-contained JSON object per line. The directory and file are
    created on the first write. Write failures are logged and swallowed:
    losing the dead letter must not stop the queue.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def put(self, letter: DeadLetter) -> None:
        line = json.dumps(letter.to_dict(), ensure_ascii=False, sort_keys=True)
        async with self._lock:
            try:
                await asyncio.get_event_loop().run_in_executor(None, self._append_line, line)
            except OSError as e:
                logger.error(
                    "Dead letter write failed",
                    extra={"path": str(self.path), "error": str(e), "queue": letter.queue},
                )

    def _append_line(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")


def create_dead_letter_sink(path: str | None) -> DeadLetterSink:
    """JSONL sink when a path is configured, logging sink otherwise."""
    if path:
        return JsonlDeadLetterSink(path)
    return LoggingDeadLetterSink()
