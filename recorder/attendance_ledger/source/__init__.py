"""
Presence event source abstraction.

The source is an external collaborator; this package only defines the
protocol the recorder consumes plus an in-memory implementation.
"""

from .base import (
    EventKind,
    Identity,
    PresenceEvent,
    PresenceSource,
    SourceError,
    SourceUnavailable,
    create_presence_source,
)
from .memory import InMemoryPresenceSource

__all__ = [
    "PresenceSource",
    "PresenceEvent",
    "EventKind",
    "Identity",
    "SourceError",
    "SourceUnavailable",
    "create_presence_source",
    "InMemoryPresenceSource",
]
