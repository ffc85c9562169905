"""
Tests for sync state tracking.
"""

from datetime import UTC, datetime, timedelta

import pytest

from gerrit_poller.models import LastSyncState
from gerrit_poller.state import InMemorySyncStateTracker

INSTANCE = "https://review.example.org"
T = datetime(2024, 1, 15, 12, tzinfo=UTC)


class TestInMemorySyncStateTracker:
    """Test the in-memory watermark store."""

    def setup_method(self):
        """Set up test fixtures."""
        self.tracker = InMemorySyncStateTracker(
            LastSyncState({INSTANCE: {"kept": T, "dropped": T}})
        )

    @pytest.mark.asyncio
    async def test_update_seeds_keeps_and_drops(self):
        before = datetime.now(UTC)

        await self.tracker.update({INSTANCE: {"kept": None, "added": None}})

        state = await self.tracker.current()
        assert set(state[INSTANCE]) == {"kept", "added"}
        assert state[INSTANCE]["kept"] == T
        assert state[INSTANCE]["added"] >= before

    @pytest.mark.asyncio
    async def test_update_drops_removed_instances(self):
        await self.tracker.update({})

        assert await self.tracker.current() == {}

    @pytest.mark.asyncio
    async def test_advance_moves_forward_only(self):
        await self.tracker.advance(INSTANCE, "kept", T + timedelta(minutes=5))
        await self.tracker.advance(INSTANCE, "kept", T)

        state = await self.tracker.current()
        assert state[INSTANCE]["kept"] == T + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_advance_unknown_project(self):
        await self.tracker.advance("https://other.example.org", "new", T)

        state = await self.tracker.current()
        assert state["https://other.example.org"] == {"new": T}

    @pytest.mark.asyncio
    async def test_current_is_a_snapshot(self):
        snapshot = await self.tracker.current()
        snapshot[INSTANCE]["kept"] = T + timedelta(days=1)

        state = await self.tracker.current()
        assert state[INSTANCE]["kept"] == T

    def test_initial_state_is_copied(self):
        initial = LastSyncState({INSTANCE: {"kept": T}})
        tracker = InMemorySyncStateTracker(initial)

        initial[INSTANCE]["kept"] = T + timedelta(days=1)

        assert tracker.state[INSTANCE]["kept"] == T
