"""
Publish/subscribe channel for monitor events.

Every subscriber owns a bounded queue. Publishing never waits: when a queue
is full its oldest event is dropped and counted, so a slow consumer cannot
stall metric collection. Subscribers registered with a callback get a
dispatcher task that drains their queue and invokes the callback with the
event payload. Coroutine functions are awaited on the loop; plain functions
run on a worker thread, since they may block.
"""
import asyncio
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


# Event topics
QUALITY_ALERT = "quality_alert"
IMPROVEMENT_OPPORTUNITIES = "improvement_opportunities"
MONITORING_STARTED = "monitoring_started"
MONITORING_STOPPED = "monitoring_stopped"
QUALITY_CHECK_COMPLETE = "quality_check_complete"
BASELINE_ESTABLISHED = "baseline_established"

TOPICS = frozenset({
    QUALITY_ALERT,
    IMPROVEMENT_OPPORTUNITIES,
    MONITORING_STARTED,
    MONITORING_STOPPED,
    QUALITY_CHECK_COMPLETE,
    BASELINE_ESTABLISHED,
})


@dataclass
class Event:
    """Event envelope"""
    topic: str
    payload: Any
    timestamp: datetime = field(default_factory=datetime.now)


class Subscription:
    """A subscriber's bounded mailbox on one topic."""

    def __init__(
        self,
        topic: str,
        maxsize: int,
        callback: Optional[Callable[[Any], Any]] = None
    ):
        self.topic = topic
        self.callback = callback
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.delivered = 0
        self.active = True
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def offer(self, event: Event) -> None:
        """Enqueue without waiting, evicting the oldest event when full."""
        if self.queue.full():
            try:
                self.queue.get_nowait()
                self.queue.task_done()
                self.dropped += 1
                logger.warning(
                    f"Subscriber queue full on '{self.topic}' - dropped oldest event "
                    f"({self.dropped} dropped so far)"
                )
            except asyncio.QueueEmpty:
                pass
        self.queue.put_nowait(event)
        self.delivered += 1
        self.ensure_dispatcher()

    async def get(self) -> Event:
        """Wait for the next event (queue-style consumers)."""
        event = await self.queue.get()
        self.queue.task_done()
        return event

    def get_nowait(self) -> Event:
        event = self.queue.get_nowait()
        self.queue.task_done()
        return event

    def drain(self) -> List[Event]:
        """Take every queued event without waiting."""
        events = []
        while not self.queue.empty():
            events.append(self.get_nowait())
        return events

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        await self.queue.join()

    def ensure_dispatcher(self) -> None:
        """Start the callback dispatcher once an event loop is running."""
        if self.callback is None or not self.active:
            return
        if self._task is not None and not self._task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._loop is not None and loop is not self._loop:
            self._rebind_queue()
        self._loop = loop
        self._task = loop.create_task(self._dispatch())

    def _rebind_queue(self) -> None:
        # Queues bind to the loop of their first waiter; carry pending events over
        pending = self.drain()
        self.queue = asyncio.Queue(maxsize=self.queue.maxsize)
        for event in pending:
            self.queue.put_nowait(event)

    async def _dispatch(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                if inspect.iscoroutinefunction(self.callback):
                    await self.callback(event.payload)
                else:
                    # Plain callbacks may block, so they run on a worker thread
                    result = await asyncio.to_thread(self.callback, event.payload)
                    if inspect.isawaitable(result):
                        await result
            except Exception as e:
                logger.error(
                    f"Subscriber callback failed on '{self.topic}': {e}",
                    exc_info=True
                )
            finally:
                self.queue.task_done()

    async def close(self) -> None:
        self.active = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


class EventChannel:
    """
    Topic-based publish/subscribe channel.

    Usage:
        channel = EventChannel()
        alerts = channel.subscribe("quality_alert")             # queue consumer
        channel.subscribe("improvement_opportunities", print)  # callback consumer

        channel.publish("quality_alert", alert)
        event = await alerts.get()
    """

    def __init__(self, default_maxsize: int = 100):
        self.default_maxsize = default_maxsize
        self._subscriptions: Dict[str, List[Subscription]] = defaultdict(list)

    def subscribe(
        self,
        topic: str,
        callback: Optional[Callable[[Any], Any]] = None,
        maxsize: Optional[int] = None
    ) -> Subscription:
        """
        Subscribe to a topic.

        Args:
            topic: One of TOPICS
            callback: Optional handler invoked with each payload
            maxsize: Queue bound (defaults to the channel default)

        Returns:
            Subscription handle
        """
        if topic not in TOPICS:
            raise ValueError(f"Unknown topic '{topic}'. Available: {sorted(TOPICS)}")

        subscription = Subscription(topic, maxsize or self.default_maxsize, callback)
        self._subscriptions[topic].append(subscription)
        subscription.ensure_dispatcher()
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions.get(subscription.topic, [])
        if subscription in subscribers:
            subscribers.remove(subscription)
        subscription.active = False
        if subscription._task is not None:
            subscription._task.cancel()

    def publish(self, topic: str, payload: Any) -> int:
        """
        Publish an event to every subscriber of ``topic``.

        Returns:
            Number of subscribers the event was queued for
        """
        event = Event(topic=topic, payload=payload)
        subscribers = list(self._subscriptions.get(topic, []))
        for subscription in subscribers:
            subscription.offer(event)

        logger.debug(f"Published '{topic}' to {len(subscribers)} subscribers")
        return len(subscribers)

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        if topic is not None:
            return len(self._subscriptions.get(topic, []))
        return sum(len(subs) for subs in self._subscriptions.values())

    def dropped_count(self) -> int:
        """Events evicted from full queues across current subscribers."""
        return sum(s.dropped for subs in self._subscriptions.values() for s in subs)

    async def close(self) -> None:
        """Stop every dispatcher task and drop all subscriptions."""
        for subscribers in self._subscriptions.values():
            for subscription in subscribers:
                await subscription.close()
        self._subscriptions.clear()
