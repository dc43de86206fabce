"""
Unit tests for the presence resolver.

Tests cover:
- Connection id to identity id mapping
- Polling until the display name propagates
- Attempt and timeout bounds
"""

import pytest

from recorder.attendance_ledger.ledger.presence import (
    IdentityResolutionTimeout,
    IdentityUnresolved,
    PresenceResolver,
)
from recorder.attendance_ledger.source.base import Identity
from recorder.attendance_ledger.source.memory import InMemoryPresenceSource


class TestPresenceResolver:
    """Tests for PresenceResolver."""

    @pytest.fixture
    def source(self):
        return InMemoryPresenceSource()

    def test_resolve_identity_id(self, source):
        source.register("enc-1", "U1")
        resolver = PresenceResolver(source, poll_interval=0)

        assert resolver.resolve_identity_id("enc-1") == "U1"

    def test_unknown_connection(self, source):
        resolver = PresenceResolver(source, poll_interval=0)

        with pytest.raises(IdentityUnresolved):
            resolver.resolve_identity_id("enc-404")

    @pytest.mark.asyncio
    async def test_immediate_identity(self, source):
        source.register("enc-1", Identity("U1", "Alice"))
        resolver = PresenceResolver(source, poll_interval=0)

        identity = await resolver.resolve_identity("U1")

        assert identity == Identity("U1", "Alice")
        assert source.lookup_counts["U1"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("misses", [1, 3, 10])
    async def test_converges_after_misses(self, source, misses):
        """M unknown lookups then a valid one means exactly M+1 lookups."""
        source.set_identity(Identity("U1", "Alice"))
        source.script_lookups("U1", *([None] * misses))
        resolver = PresenceResolver(source, poll_interval=0)

        identity = await resolver.resolve_identity("U1")

        assert identity.display_name == "Alice"
        assert source.lookup_counts["U1"] == misses + 1

    @pytest.mark.asyncio
    async def test_nameless_identity_keeps_polling(self, source):
        """An identity without a display name is not ready yet."""
        source.set_identity(Identity("U1", "Alice"))
        source.script_lookups("U1", Identity("U1"), Identity("U1", ""))
        resolver = PresenceResolver(source, poll_interval=0)

        identity = await resolver.resolve_identity("U1")

        assert identity.display_name == "Alice"
        assert source.lookup_counts["U1"] == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, source):
        resolver = PresenceResolver(source, poll_interval=0, max_attempts=5)

        with pytest.raises(IdentityResolutionTimeout):
            await resolver.resolve_identity("U1")

        assert source.lookup_counts["U1"] == 5

    @pytest.mark.asyncio
    async def test_gives_up_after_timeout(self, source):
        resolver = PresenceResolver(source, poll_interval=0.01, max_attempts=10_000, timeout=0.05)

        with pytest.raises(IdentityResolutionTimeout):
            await resolver.resolve_identity("U1")

        assert 0 < source.lookup_counts["U1"] < 10_000
