"""
Base protocol and types for the presence event source.

The source delivers entry/exit notifications keyed by an ephemeral
connection id, resolves connection ids to stable identity ids, and exposes
an identity lookup that may transiently return nothing while the profile
is still propagating.

Invariants:
    - PresenceEvent timestamps are timezone-aware
    - events() raises SourceUnavailable when the connection drops
    - After a reconnect only future events are delivered; there is no backfill

How to change safely:
    - Protocol changes require updating all implementations
    - Keep lookups non-blocking; waiting belongs to PresenceResolver
"""

from __future__ import annotations

import importlib
import logging
from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import PresenceConfig

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Base exception for presence source operations."""
    pass


class SourceUnavailable(SourceError):
    """The event source is disconnected."""
    pass


class EventKind(Enum):
    """Presence event kinds."""

    ENTER = "enter"
    EXIT = "exit"


@dataclass(frozen=True)
class PresenceEvent:
    """A single entry or exit notification.

    Attributes:
        kind: Entry or exit
        connection_id: Ephemeral connection identifier
        timestamp: When the source observed the event (timezone-aware)
    """
    kind: EventKind
    connection_id: str
    timestamp: datetime


@dataclass(frozen=True)
class Identity:
    """A participant known to the source.

    Attributes:
        id: Stable, globally unique identity id
        display_name: Display name, None until the profile has propagated
    """
    id: str
    display_name: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.display_name)


@runtime_checkable
class PresenceSource(Protocol):
    """Protocol for presence event sources."""

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the source.

        Raises:
            SourceUnavailable: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Disconnect and release resources."""
        ...

    @abstractmethod
    def events(self) -> AsyncIterator[PresenceEvent]:
        """Yield presence events in arrival order.

        Raises:
            SourceUnavailable: When the connection drops
        """
        ...

    @abstractmethod
    def get_identity_id(self, connection_id: str) -> Optional[str]:
        """Map a connection id to its stable identity id, if known."""
        ...

    @abstractmethod
    def get_identity(self, identity_id: str) -> Optional[Identity]:
        """Current identity data, or None if not yet known."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected."""
        ...


def create_presence_source(config: "PresenceConfig") -> PresenceSource:
    """Instantiate the source named by ``config.source_factory``.

    The factory is a ``module:attribute`` path to a callable taking the
    PresenceConfig, so deployments can plug in a client for their
    virtual-space provider without changes here.

    Raises:
        ValueError: If the path is malformed or cannot be imported
    """
    module_name, _, attr = config.source_factory.partition(":")
    if not module_name or not attr:
        raise ValueError(
            f"Invalid PRESENCE_SOURCE_FACTORY '{config.source_factory}'. "
            "Expected 'package.module:factory'"
        )
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"Cannot load presence source '{config.source_factory}': {e}") from e

    logger.info("Presence source selected", extra={"factory": config.source_factory})
    return factory(config)
