"""
Tests for the event bus.
"""
import pytest

from kizuna_bot.core.events import EventBus, EventType


class TestEventBus:
    """Tests for subscribe/publish."""

    @pytest.mark.asyncio
    async def test_delivers_to_sync_and_async_handlers(self):
        bus = EventBus()
        seen = []

        async def async_handler(event):
            seen.append(("async", event.data["n"]))

        bus.subscribe(EventType.NFT_BOUGHT, lambda e: seen.append(("sync", e.data["n"])))
        bus.subscribe(EventType.NFT_BOUGHT, async_handler)

        event = await bus.publish(EventType.NFT_BOUGHT, {"n": 1})

        assert seen == [("sync", 1), ("async", 1)]
        assert event.type == EventType.NFT_BOUGHT

    @pytest.mark.asyncio
    async def test_only_matching_type_is_delivered(self):
        bus = EventBus()
        seen = []
        bus.subscribe(EventType.ERROR, seen.append)

        await bus.publish(EventType.PRICE_ALERT)

        assert seen == []

    @pytest.mark.asyncio
    async def test_raising_handler_does_not_stop_others(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        bus.subscribe(EventType.ERROR, broken)
        bus.subscribe(EventType.ERROR, seen.append)

        await bus.publish(EventType.ERROR, {"x": 1})

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_once_fires_a_single_time(self):
        bus = EventBus()
        seen = []
        bus.once(EventType.BALANCE_CHANGED, seen.append)

        await bus.publish(EventType.BALANCE_CHANGED)
        await bus.publish(EventType.BALANCE_CHANGED)

        assert len(seen) == 1
        assert bus.listener_count(EventType.BALANCE_CHANGED) == 0

    @pytest.mark.asyncio
    async def test_subscribe_all_sees_every_type(self):
        bus = EventBus()
        seen = []
        bus.subscribe_all(lambda e: seen.append(e.type))

        await bus.publish(EventType.NFT_BOUGHT)
        await bus.publish(EventType.ERROR)

        assert seen == [EventType.NFT_BOUGHT, EventType.ERROR]

    def test_unsubscribe_and_counts(self):
        bus = EventBus()
        handler = lambda e: None  # noqa: E731
        bus.subscribe(EventType.ERROR, handler)
        bus.subscribe_all(handler)

        assert bus.listener_count() == 2
        assert bus.unsubscribe(EventType.ERROR, handler) is True
        assert bus.unsubscribe(EventType.ERROR, handler) is False

        bus.remove_all()
        assert bus.listener_count() == 0
