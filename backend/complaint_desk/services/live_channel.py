"""
LiveChannel - in-process fan-out of new thread messages, keyed by complaint id.

Each subscriber owns a bounded asyncio.Queue. Publishing never blocks:
a subscriber whose queue is full is marked lagged and must resync from
the store (see MessageThread.follow). Subscriptions are scoped resources;
use `async with channel.subscribe(complaint_id) as sub`.
"""

from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Set
from uuid import UUID
import asyncio
import structlog

from complaint_desk.core.config import settings
from complaint_desk.schemas.message import MessageRead

logger = structlog.get_logger()


class SubscriptionLagged(Exception):
    """The subscriber missed events and must resync from the store."""


class Subscription:
    def __init__(self, complaint_id: UUID, maxsize: int):
        self.complaint_id = complaint_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.lagged = False
        self.closed = False

    def offer(self, message: MessageRead) -> None:
        if self.closed or self.lagged:
            return
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.lagged = True
            logger.warning("live_subscriber_lagged", complaint_id=str(self.complaint_id))

    def reset(self) -> None:
        """Drop buffered events after a resync."""
        while not self.queue.empty():
            self.queue.get_nowait()
        self.lagged = False

    async def get(self) -> MessageRead:
        if self.lagged:
            raise SubscriptionLagged()
        message = await self.queue.get()
        return message

    def __aiter__(self):
        return self

    async def __anext__(self) -> MessageRead:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()


class LiveChannel:
    def __init__(self, maxsize: int = None):
        self.maxsize = maxsize or settings.LIVE_QUEUE_MAXSIZE
        self._subscribers: Dict[UUID, Set[Subscription]] = defaultdict(set)

    def subscriber_count(self, complaint_id: UUID) -> int:
        return len(self._subscribers.get(complaint_id, ()))

    @asynccontextmanager
    async def subscribe(self, complaint_id: UUID) -> AsyncIterator[Subscription]:
        subscription = Subscription(complaint_id, self.maxsize)
        self._subscribers[complaint_id].add(subscription)
        logger.info("live_subscribed", complaint_id=str(complaint_id), subscribers=self.subscriber_count(complaint_id))
        try:
            yield subscription
        finally:
            self._release(subscription)

    def _release(self, subscription: Subscription) -> None:
        subscription.closed = True
        subscribers = self._subscribers.get(subscription.complaint_id)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[subscription.complaint_id]
        logger.info(
            "live_unsubscribed",
            complaint_id=str(subscription.complaint_id),
            subscribers=self.subscriber_count(subscription.complaint_id),
        )

    def publish(self, message: MessageRead) -> int:
        """
        Deliver to every current subscriber of the message's complaint.
        Returns the number of subscribers reached.
        """
        subscribers = list(self._subscribers.get(message.complaint_id, ()))
        for subscription in subscribers:
            subscription.offer(message)
        return len(subscribers)


live_channel = LiveChannel()
