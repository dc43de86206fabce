"""
In-memory presence source for testing and local runs.

Events are pushed with emit() and identities are registered or scripted
directly, so tests can reproduce late-propagating profiles and
disconnects without a live virtual space.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from .base import EventKind, Identity, PresenceEvent, SourceUnavailable

logger = logging.getLogger(__name__)

_DISCONNECT = object()


class InMemoryPresenceSource:
    """In-memory implementation of the PresenceSource protocol.

    Attributes:
        lookup_counts: Number of get_identity() calls per identity id
        connect_count: Number of successful connect() calls

    Example:
        >>> source = InMemoryPresenceSource()
        >>> source.register("enc-1", Identity("U1", "Alice"))
        >>> await source.connect()
        >>> source.emit_enter("enc-1")
    """

    def __init__(self, config: Any = None) -> None:
        self.config = config
        self._connected = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._connections: Dict[str, str] = {}
        self._identities: Dict[str, Identity] = {}
        self._scripted: Dict[str, List[Optional[Identity]]] = defaultdict(list)
        self.lookup_counts: Dict[str, int] = defaultdict(int)
        self.connect_count = 0

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True
        self.connect_count += 1
        logger.debug("InMemoryPresenceSource connected")

    async def close(self) -> None:
        self._connected = False
        logger.debug("InMemoryPresenceSource closed")

    async def events(self) -> AsyncIterator[PresenceEvent]:
        if not self._connected:
            raise SourceUnavailable("Not connected")

        while True:
            item = await self._queue.get()
            if item is _DISCONNECT:
                self._connected = False
                raise SourceUnavailable("Connection dropped")
            yield item

    def get_identity_id(self, connection_id: str) -> Optional[str]:
        return self._connections.get(connection_id)

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        self.lookup_counts[identity_id] += 1
        scripted = self._scripted.get(identity_id)
        if scripted:
            return scripted.pop(0)
        return self._identities.get(identity_id)

    # Testing helpers

    def register(self, connection_id: str, identity: Union[Identity, str]) -> None:
        """Map a connection id to an identity (testing helper).

        Passing a bare id registers the connection without profile data.
        """
        if isinstance(identity, str):
            identity = Identity(identity)
        self._connections[connection_id] = identity.id
        if identity.is_complete:
            self._identities[identity.id] = identity

    def set_identity(self, identity: Identity) -> None:
        """Set or replace an identity's profile (testing helper)."""
        self._identities[identity.id] = identity

    def script_lookups(self, identity_id: str, *results: Optional[Identity]) -> None:
        """Queue lookup results returned before the registered identity (testing helper)."""
        self._scripted[identity_id].extend(results)

    def emit(self, event: PresenceEvent) -> None:
        """Deliver an event to the consumer (testing helper)."""
        self._queue.put_nowait(event)

    def emit_enter(self, connection_id: str, timestamp: Optional[datetime] = None) -> None:
        self.emit(PresenceEvent(EventKind.ENTER, connection_id, timestamp or datetime.now(timezone.utc)))

    def emit_exit(self, connection_id: str, timestamp: Optional[datetime] = None) -> None:
        self.emit(PresenceEvent(EventKind.EXIT, connection_id, timestamp or datetime.now(timezone.utc)))

    def drop_connection(self) -> None:
        """Make the consumer see SourceUnavailable after queued events (testing helper)."""
        self._queue.put_nowait(_DISCONNECT)
