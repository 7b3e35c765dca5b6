"""
Tests for the SubscriptionManager lifecycle.

Tests cover:
- Immediate first cycle on subscribe, then periodic cycles
- Unsubscribe stops deliveries
- Re-subscribe replaces the running loop
- Feed and transport failures stay inside one subscription
- Shared default and per-recipient thresholds
"""

import asyncio
from datetime import timezone
from unittest.mock import AsyncMock, Mock

import pytest

from dealwatch.api.bybit import EmptyFeedError, TransportError, parse_batch
from dealwatch.core.poll_cycle import PollCycle
from dealwatch.core.subscriptions import SubscriptionManager

from conftest import RecordingTransport, TickingFeed, make_deal

INTERVAL = 0.02


def manager_for(feed, transport, threshold=500_000):
    return SubscriptionManager(
        PollCycle(feed, tz=timezone.utc),
        transport,
        poll_interval_sec=INTERVAL,
        default_threshold=threshold,
    )


async def ticks(n):
    await asyncio.sleep(INTERVAL * n)


class TestSubscribe:
    """Test subscribe and the polling loop."""

    @pytest.mark.asyncio
    async def test_first_cycle_runs_before_subscribe_returns(self, transport):
        feed = Mock()
        feed.fetch = AsyncMock(return_value=[make_deal(1000, "1200000"), make_deal(999, "300000")])
        manager = manager_for(feed, transport)
        try:
            sub = await manager.subscribe("chat-1")

            assert transport.texts_for("chat-1") == ["✅ Buy\t $ 1,200,000\n1970-01-01 00:16:40"]
            assert sub.watermark.value == 1000
            assert manager.is_active("chat-1")
        finally:
            await manager.close()

    @pytest.mark.asyncio
    async def test_loop_delivers_new_deals(self, transport):
        feed = TickingFeed()
        manager = manager_for(feed, transport)
        try:
            await manager.subscribe("chat-1")
            await ticks(6)
        finally:
            await manager.close()

        texts = transport.texts_for("chat-1")
        assert len(texts) >= 3
        assert len(texts) == len(set(texts))

    @pytest.mark.asyncio
    async def test_repeated_batch_is_not_redelivered(self, transport):
        feed = Mock()
        feed.fetch = AsyncMock(return_value=[make_deal(1000, "900000"), make_deal(990, "800000")])
        manager = manager_for(feed, transport)
        try:
            await manager.subscribe("chat-1")
            await ticks(5)
        finally:
            await manager.close()

        assert feed.fetch.await_count >= 3
        assert len(transport.texts_for("chat-1")) == 2

    @pytest.mark.asyncio
    async def test_empty_cycle_sends_nothing(self, transport):
        feed = Mock()
        feed.fetch = AsyncMock(side_effect=EmptyFeedError("no list"))
        manager = manager_for(feed, transport)
        try:
            await manager.subscribe("chat-1")
            await ticks(3)
        finally:
            await manager.close()

        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_subscriptions_keep_separate_watermarks(self, transport):
        feed = Mock()
        feed.fetch = AsyncMock(return_value=[make_deal(1000, "900000")])
        manager = manager_for(feed, transport)
        try:
            await manager.subscribe("chat-1")
            await ticks(3)
            await manager.subscribe("chat-2")
        finally:
            await manager.close()

        assert len(transport.texts_for("chat-1")) == 1
        assert len(transport.texts_for("chat-2")) == 1


class TestUnsubscribe:
    """Test stopping subscriptions."""

    @pytest.mark.asyncio
    async def test_no_deliveries_after_unsubscribe(self, transport):
        feed = TickingFeed()
        manager = manager_for(feed, transport)
        try:
            sub = await manager.subscribe("chat-1")
            assert manager.unsubscribe("chat-1") is True

            sent_before = len(transport.sent)
            calls_before = feed.calls
            await ticks(5)

            assert len(transport.sent) == sent_before
            assert feed.calls == calls_before
            assert sub.task.done()
            assert not manager.is_active("chat-1")
        finally:
            await manager.close()

    @pytest.mark.asyncio
    async def test_unsubscribe_unknown_is_noop(self, transport):
        manager = manager_for(TickingFeed(), transport)
        assert manager.unsubscribe("nobody") is False

    @pytest.mark.asyncio
    async def test_close_stops_all_loops(self, transport):
        manager = manager_for(TickingFeed(), transport)
        subs = [await manager.subscribe(f"chat-{i}") for i in range(3)]

        await manager.close()

        assert manager.active_recipients() == []
        assert all(sub.task.done() for sub in subs)


class TestResubscribe:
    """Test that subscribing twice keeps exactly one loop."""

    @pytest.mark.asyncio
    async def test_second_subscribe_replaces_first(self, transport):
        manager = manager_for(TickingFeed(), transport)
        try:
            first = await manager.subscribe("chat-1")
            second = await manager.subscribe("chat-1")
            await ticks(3)

            assert first.cancelled.is_set()
            assert first.task.done()
            assert not second.task.done()
            assert manager.active_recipients() == ["chat-1"]
        finally:
            await manager.close()

    @pytest.mark.asyncio
    async def test_single_live_loop_after_replace(self, transport):
        feed = TickingFeed()
        manager = manager_for(feed, transport)
        try:
            await manager.subscribe("chat-1")
            second = await manager.subscribe("chat-1")
            await ticks(6)

            live = [t for t in asyncio.all_tasks() if t.get_name() == "poll-chat-1"]
            assert live == [second.task]
        finally:
            await manager.close()

    @pytest.mark.asyncio
    async def test_resubscribe_resets_watermark(self, transport):
        feed = Mock()
        feed.fetch = AsyncMock(return_value=[make_deal(1000, "900000")])
        manager = manager_for(feed, transport)
        try:
            await manager.subscribe("chat-1")
            await manager.subscribe("chat-1")
        finally:
            await manager.close()

        assert len(transport.texts_for("chat-1")) == 2


class TestFailures:
    """Test that failures are contained."""

    @pytest.mark.asyncio
    async def test_feed_error_is_retried_next_tick(self, transport):
        calls = []

        def flaky_fetch():
            calls.append(1)
            if len(calls) <= 2:
                raise TransportError("down")
            return [make_deal(1000, "900000")]

        feed = Mock()
        feed.fetch = AsyncMock(side_effect=flaky_fetch)
        manager = manager_for(feed, transport)
        try:
            sub = await manager.subscribe("chat-1")
            assert transport.sent == []
            assert sub.watermark.value == 0

            await ticks(6)
        finally:
            await manager.close()

        assert len(transport.texts_for("chat-1")) == 1
        assert sub.watermark.value == 1000

    @pytest.mark.asyncio
    async def test_undisplayable_timestamp_is_retried_not_stuck(self, transport):
        good = {"symbol": "BTCUSDT", "side": "Buy", "timestamp": "1000", "value": "900000"}
        bad = dict(good, timestamp="99999999999999")
        calls = []

        def fetch():
            calls.append(1)
            items = [bad, good] if len(calls) <= 2 else [good]
            return parse_batch({"retCode": 0, "result": {"list": items}})

        feed = Mock()
        feed.fetch = AsyncMock(side_effect=fetch)
        manager = manager_for(feed, transport)
        try:
            sub = await manager.subscribe("chat-1")
            assert sub.watermark.value == 0

            await ticks(6)
        finally:
            await manager.close()

        assert transport.texts_for("chat-1") == ["✅ Buy\t $ 900,000\n1970-01-01 00:16:40"]
        assert sub.watermark.value == 1000

    @pytest.mark.asyncio
    async def test_transport_failure_does_not_affect_other_recipient(self):
        transport = RecordingTransport(fail_for={"broken"})
        feed = TickingFeed()
        manager = manager_for(feed, transport)
        try:
            broken = await manager.subscribe("broken")
            await manager.subscribe("healthy")
            await ticks(5)

            assert manager.is_active("broken")
            assert not broken.task.done()
        finally:
            await manager.close()

        assert len(transport.texts_for("healthy")) >= 2


class TestThresholds:
    """Test runtime threshold changes."""

    @pytest.mark.asyncio
    async def test_default_threshold_change_applies_next_tick(self, transport):
        feed = TickingFeed(value="600000")
        manager = manager_for(feed, transport, threshold=1_000_000)
        try:
            await manager.subscribe("chat-1")
            await ticks(3)
            assert transport.sent == []

            manager.set_threshold(500_000)
            await ticks(4)
        finally:
            await manager.close()

        assert manager.get_threshold() == 500_000
        assert len(transport.texts_for("chat-1")) >= 1

    @pytest.mark.asyncio
    async def test_recipient_override(self, transport):
        manager = manager_for(TickingFeed(), transport)

        manager.set_threshold(2_000_000, recipient="chat-1")

        assert manager.get_threshold("chat-1") == 2_000_000
        assert manager.get_threshold("chat-2") == 500_000
        assert manager.get_threshold() == 500_000

        manager.set_threshold(3_000_000, recipient="chat-1")
        assert manager.get_threshold("chat-1") == 3_000_000

    @pytest.mark.asyncio
    async def test_override_only_filters_its_recipient(self, transport):
        feed = Mock()
        feed.fetch = AsyncMock(return_value=[make_deal(1000, "900000")])
        manager = manager_for(feed, transport)
        manager.set_threshold(1_000_000, recipient="picky")
        try:
            await manager.subscribe("picky")
            await manager.subscribe("casual")
        finally:
            await manager.close()

        assert transport.texts_for("picky") == []
        assert len(transport.texts_for("casual")) == 1

    @pytest.mark.asyncio
    async def test_invalid_threshold_rejected(self, transport):
        manager = manager_for(TickingFeed(), transport)
        with pytest.raises(ValueError):
            manager.set_threshold(-5)
        assert manager.get_threshold() == 500_000


class TestPollNow:
    """Test out-of-band cycles."""

    @pytest.mark.asyncio
    async def test_poll_now_runs_a_cycle(self, transport):
        feed = TickingFeed()
        manager = SubscriptionManager(
            PollCycle(feed, tz=timezone.utc), transport,
            poll_interval_sec=60, default_threshold=500_000,
        )
        try:
            await manager.subscribe("chat-1")
            assert await manager.poll_now("chat-1") is True
        finally:
            await manager.close()

        assert feed.calls == 2
        assert len(transport.texts_for("chat-1")) == 2

    @pytest.mark.asyncio
    async def test_poll_now_requires_subscription(self, transport):
        feed = TickingFeed()
        manager = manager_for(feed, transport)

        assert await manager.poll_now("chat-1") is False
        assert feed.calls == 0
