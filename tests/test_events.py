"""Unit tests for the in-process event channel."""

import pytest

from xcred.core.events import EventBus, ProfileResolved, RateLimited, RemoteFallbackSuggested


class TestEventBus:

    @pytest.mark.asyncio
    async def test_sync_handler_receives_matching_events(self):
        bus = EventBus()
        seen = []
        bus.subscribe(RateLimited, seen.append)

        bus.publish(RateLimited("alice", 60.0, 1))
        bus.publish(ProfileResolved("alice", error=False))
        await bus.drain()

        assert seen == [RateLimited("alice", 60.0, 1)]
        await bus.close()

    @pytest.mark.asyncio
    async def test_events_arrive_in_publish_order(self):
        bus = EventBus()
        seen = []
        bus.subscribe(RateLimited, seen.append)

        for hits in (1, 2, 3):
            bus.publish(RateLimited("alice", 60.0, hits))
        await bus.drain()

        assert [e.consecutive_hits for e in seen] == [1, 2, 3]
        await bus.close()

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(RateLimited, seen.append)
        unsubscribe()
        unsubscribe()

        bus.publish(RateLimited("alice", 60.0, 1))
        await bus.drain()

        assert seen == []
        assert bus.in_flight == 0

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(RateLimited, broken)
        bus.subscribe(RateLimited, seen.append)
        bus.publish(RateLimited("alice", 60.0, 1))
        bus.publish(RateLimited("alice", 90.0, 2))
        await bus.drain()

        assert len(seen) == 2
        await bus.close()

    @pytest.mark.asyncio
    async def test_async_handler_runs_in_background(self):
        bus = EventBus()
        seen = []

        async def handler(event):
            seen.append(event.username)

        bus.subscribe(ProfileResolved, handler)
        bus.publish(ProfileResolved("bob", error=True))
        await bus.drain()

        assert seen == ["bob"]
        await bus.close()

    @pytest.mark.asyncio
    async def test_drain_follows_chained_events(self):
        bus = EventBus()
        suggestions = []
        bus.subscribe(RateLimited, lambda e: bus.publish(RemoteFallbackSuggested(e.username)))
        bus.subscribe(RemoteFallbackSuggested, suggestions.append)

        bus.publish(RateLimited("alice", 60.0, 1))
        await bus.drain()

        assert suggestions == [RemoteFallbackSuggested("alice")]
        await bus.close()

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self):
        bus = EventBus()
        bus.publish(RateLimited("alice", 60.0, 1))
        await bus.drain()
        assert bus.in_flight == 0
