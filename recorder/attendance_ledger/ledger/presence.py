"""
Presence resolver: waits for identity data to propagate.

A source can announce an entry before the participant's profile, display
name included, is available. The resolver polls the source's lookup at a
fixed interval until the name shows up, bounded by an attempt count and
an optional overall timeout so a stuck profile fails the task instead of
blocking the identity queue forever.
"""

from __future__ import annotations

import asyncio
import logging

from ..source.base import Identity, PresenceSource

logger = logging.getLogger(__name__)


class PresenceError(Exception):
    """Base exception for identity resolution."""

    pass


class IdentityUnresolved(PresenceError):
    """Connection id has no mapped identity."""

    pass


class IdentityResolutionTimeout(PresenceError):
    """Identity data did not become available in time."""

    pass


class PresenceResolver:
    """Resolves connection ids and waits for complete identities.

    Example:
        >>> resolver = PresenceResolver(source, poll_interval=1.0, max_attempts=300)
        >>> uid = resolver.resolve_identity_id("enc-1")
        >>> identity = await resolver.resolve_identity(uid)
    """

    def __init__(
        self,
        source: PresenceSource,
        poll_interval: float = 1.0,
        max_attempts: int = 300,
        timeout: float | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            source: Presence source to query
            poll_interval: Seconds between lookups
            max_attempts: Lookups before giving up
            timeout: Overall seconds before giving up (None = no limit)
        """
        self.source = source
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.timeout = timeout

    def resolve_identity_id(self, connection_id: str) -> str:
        """Stable identity id for ``connection_id``.

        Raises:
            IdentityUnresolved: If the source has no mapping
        """
        identity_id = self.source.get_identity_id(connection_id)
        if not identity_id:
            raise IdentityUnresolved(f"No identity found for connection {connection_id}")
        return identity_id

    async def resolve_identity(self, identity_id: str) -> Identity:
        """Poll until ``identity_id`` has a display name.

        The first lookup is immediate; each miss waits ``poll_interval``.

        Raises:
            IdentityResolutionTimeout: If attempts or the timeout run out
        """
        if self.timeout is None:
            return await self._poll(identity_id)
        try:
            return await asyncio.wait_for(self._poll(identity_id), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise IdentityResolutionTimeout(
                f"Identity {identity_id} not available after {self.timeout}s"
            ) from None

    async def _poll(self, identity_id: str) -> Identity:
        for attempt in range(1, self.max_attempts + 1):
            identity = self.source.get_identity(identity_id)
            if identity is not None and identity.is_complete:
                logger.debug(
                    "Identity resolved",
                    extra={"identity_id": identity_id, "attempts": attempt},
                )
                return identity
            if attempt < self.max_attempts:
                await asyncio.sleep(self.poll_interval)

        raise IdentityResolutionTimeout(
            f"Identity {identity_id} not available after {self.max_attempts} lookups"
        )
