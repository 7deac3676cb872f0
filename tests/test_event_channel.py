"""
Tests for the publish/subscribe event channel.
"""
import asyncio
import pytest

from services.quality_monitor.events import (
    IMPROVEMENT_OPPORTUNITIES,
    QUALITY_ALERT,
    EventChannel,
)


class TestEventChannel:
    """Test subscription, delivery and back-pressure."""

    def test_unknown_topic_rejected(self):
        """Test subscribing to an unknown topic."""
        channel = EventChannel()
        with pytest.raises(ValueError):
            channel.subscribe("price_update")

    def test_queue_delivery(self):
        """Test queue consumers receive events in order."""
        channel = EventChannel()

        async def scenario():
            subscription = channel.subscribe(QUALITY_ALERT)
            channel.publish(QUALITY_ALERT, "first")
            channel.publish(QUALITY_ALERT, "second")
            return [(await subscription.get()).payload for _ in range(2)]

        assert asyncio.run(scenario()) == ["first", "second"]

    def test_publish_counts_subscribers_per_topic(self):
        """Test events only reach subscribers of their topic."""
        channel = EventChannel()

        async def scenario():
            alerts = channel.subscribe(QUALITY_ALERT)
            insights = channel.subscribe(IMPROVEMENT_OPPORTUNITIES)
            delivered = channel.publish(QUALITY_ALERT, {"id": "alert_1"})
            return delivered, alerts.drain(), insights.drain()

        delivered, alerts, insights = asyncio.run(scenario())

        assert delivered == 1
        assert [e.payload for e in alerts] == [{"id": "alert_1"}]
        assert insights == []

    def test_full_queue_drops_oldest(self):
        """Test publishing never blocks on a slow consumer."""
        channel = EventChannel()

        async def scenario():
            subscription = channel.subscribe(QUALITY_ALERT, maxsize=2)
            for i in range(5):
                channel.publish(QUALITY_ALERT, i)
            return subscription

        subscription = asyncio.run(scenario())

        assert subscription.dropped == 3
        assert [e.payload for e in subscription.drain()] == [3, 4]
        assert channel.dropped_count() == 3

    def test_sync_and_async_callbacks(self):
        """Test callback subscribers are dispatched in the background."""
        channel = EventChannel()
        received = []

        async def on_insights(payload):
            received.append(("async", payload))

        async def scenario():
            first = channel.subscribe(QUALITY_ALERT, lambda p: received.append(("sync", p)))
            second = channel.subscribe(IMPROVEMENT_OPPORTUNITIES, on_insights)
            channel.publish(QUALITY_ALERT, "alert")
            channel.publish(IMPROVEMENT_OPPORTUNITIES, ["insight"])
            await asyncio.wait_for(first.join(), timeout=1)
            await asyncio.wait_for(second.join(), timeout=1)
            await channel.close()

        asyncio.run(scenario())

        assert ("sync", "alert") in received
        assert ("async", ["insight"]) in received

    def test_failing_callback_does_not_stop_dispatch(self):
        """Test an exception in one callback leaves later events flowing."""
        channel = EventChannel()
        received = []

        def handler(payload):
            if payload == "bad":
                raise RuntimeError("consumer bug")
            received.append(payload)

        async def scenario():
            subscription = channel.subscribe(QUALITY_ALERT, handler)
            channel.publish(QUALITY_ALERT, "bad")
            channel.publish(QUALITY_ALERT, "good")
            await asyncio.wait_for(subscription.join(), timeout=1)
            await channel.close()

        asyncio.run(scenario())
        assert received == ["good"]

    def test_unsubscribe(self):
        """Test unsubscribed consumers get nothing."""
        channel = EventChannel()

        async def scenario():
            subscription = channel.subscribe(QUALITY_ALERT)
            channel.unsubscribe(subscription)
            return channel.publish(QUALITY_ALERT, "ignored"), subscription

        delivered, subscription = asyncio.run(scenario())

        assert delivered == 0
        assert subscription.drain() == []
        assert channel.subscriber_count() == 0
