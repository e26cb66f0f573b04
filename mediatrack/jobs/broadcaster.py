"""Topic-based publish/subscribe for job events.

Two topic classes exist: the global topic, which sees every event, and one
topic per job id. Subscriptions are explicit entries in a topic table and each
one owns an unbounded queue, so delivery never blocks the publisher. The
transport (WebSocket, SSE, ...) drains the queue; it is not part of this module.
"""

import asyncio
import itertools
import logging
from typing import Awaitable, Callable, Dict, Iterable, Optional, Set

from mediatrack.jobs.models import EventKind, JobEvent, JobStats

logger = logging.getLogger(__name__)

GLOBAL_TOPIC = "global"

_subscription_ids = itertools.count(1)


def job_topic(job_id: str) -> str:
    return f"job:{job_id}"


class Subscription:
    """One observer's handle: the topics it joined and its pending events."""

    def __init__(self):
        self.id = next(_subscription_ids)
        self.topics: Set[str] = set()
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def deliver(self, event: JobEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    async def get(self) -> JobEvent:
        return await self._queue.get()

    def get_nowait(self) -> JobEvent:
        return self._queue.get_nowait()

    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self):
        return self

    async def __anext__(self) -> JobEvent:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        return await self._queue.get()

    def __repr__(self) -> str:
        return f"Subscription(id={self.id}, topics={sorted(self.topics)})"


class EventBroadcaster:
    """Explicit topic -> subscriptions table with snapshot-on-subscribe."""

    def __init__(self):
        self._topics: Dict[str, Set[Subscription]] = {}
        self._stats_task: Optional[asyncio.Task] = None
        self._running = False

    def open(self) -> Subscription:
        return Subscription()

    def subscribe(
        self,
        subscription: Subscription,
        topic: str,
        snapshot: Optional[JobEvent] = None,
    ) -> None:
        """Join ``topic``. ``snapshot`` is queued before any later publish can reach it."""
        if snapshot is not None:
            subscription.deliver(snapshot)
        self._topics.setdefault(topic, set()).add(subscription)
        subscription.topics.add(topic)
        logger.debug(f"Subscription {subscription.id} joined {topic}")

    def unsubscribe(self, subscription: Subscription, topic: str) -> None:
        members = self._topics.get(topic)
        if members is not None:
            members.discard(subscription)
            if not members:
                del self._topics[topic]
        subscription.topics.discard(topic)
        logger.debug(f"Subscription {subscription.id} left {topic}")

    def close(self, subscription: Subscription) -> None:
        for topic in list(subscription.topics):
            self.unsubscribe(subscription, topic)
        subscription.closed = True

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    def publish(self, event: JobEvent) -> int:
        """Deliver ``event`` to the global topic and, if it names a job, that job's topic.

        A subscription on both topics gets the event once. Returns the number
        of subscriptions reached.
        """
        topics: Iterable[str] = [GLOBAL_TOPIC]
        if event.job_id is not None:
            topics = [GLOBAL_TOPIC, job_topic(event.job_id)]

        recipients: Set[Subscription] = set()
        for topic in topics:
            recipients.update(self._topics.get(topic, ()))
        for subscription in recipients:
            subscription.deliver(event)
        return len(recipients)

    # ------------------------------------------------------------------
    # Periodic stats
    # ------------------------------------------------------------------

    async def start_stats(
        self,
        provider: Callable[[], Awaitable[JobStats]],
        interval: float = 30.0,
    ) -> None:
        self._running = True
        self._stats_task = asyncio.create_task(self._stats_loop(provider, interval))

    async def stop_stats(self) -> None:
        self._running = False
        if self._stats_task:
            self._stats_task.cancel()
            try:
                await self._stats_task
            except asyncio.CancelledError:
                pass
            self._stats_task = None

    async def publish_stats(self, stats: JobStats) -> int:
        return self.publish(JobEvent(kind=EventKind.STATS, stats=stats))

    async def _stats_loop(
        self,
        provider: Callable[[], Awaitable[JobStats]],
        interval: float,
    ) -> None:
        while self._running:
            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            try:
                await self.publish_stats(await provider())
            except Exception:
                logger.exception("Stats broadcast failed")
