"""
Single-writer queues and dead-letter sinks.

One queue per logical table serializes every write against it. Failed
tasks go to a pluggable dead-letter sink instead of being retried.
"""

from .dead_letter import (
    DeadLetter,
    DeadLetterSink,
    InMemoryDeadLetterSink,
    JsonlDeadLetterSink,
    LoggingDeadLetterSink,
    create_dead_letter_sink,
)
from .queue import QueueClosed, QueueError, QueueFull, QueueStats, SingleWriterQueue, TaskOutcome

__all__ = [
    "SingleWriterQueue",
    "TaskOutcome",
    "QueueStats",
    "QueueError",
    "QueueFull",
    "QueueClosed",
    "DeadLetter",
    "DeadLetterSink",
    "LoggingDeadLetterSink",
    "InMemoryDeadLetterSink",
    "JsonlDeadLetterSink",
    "create_dead_letter_sink",
]
