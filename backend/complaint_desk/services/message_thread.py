"""
MessageThread - append-only conversation attached to a complaint.

Ordering: every message gets the next per-complaint `seq` and a created_at
that never goes backwards along seq, so seq order == created_at order.

Live viewers use `follow()`, which subscribes before loading history and
then merges the live stream using seq as a cursor:
- events at or below the cursor are duplicates and are dropped,
- an event beyond cursor + 1, or a lagged subscription, triggers a
  catch-up read from the store.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional
from uuid import UUID

from sqlalchemy import select, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from complaint_desk.core.config import settings
from complaint_desk.core.exceptions import ConcurrentModificationError, ValidationFailedError
from complaint_desk.core.time_utils import UTC, get_utc_now
from complaint_desk.db.session import store_errors
from complaint_desk.models.message import ComplaintMessage
from complaint_desk.models.user import Profile, UNKNOWN_NAME
from complaint_desk.schemas.message import MessageRead
from complaint_desk.schemas.user import Actor
from complaint_desk.services.complaint_service import ComplaintService
from complaint_desk.services.live_channel import LiveChannel, Subscription, SubscriptionLagged, live_channel

logger = structlog.get_logger()


def _aware(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class ThreadFeed:
    """
    Initial history plus the live continuation of one complaint thread.
    Iterate with `async for message in feed`.
    """

    def __init__(self, thread: "MessageThread", complaint_id: UUID, subscription: Subscription, history: List[MessageRead]):
        self.thread = thread
        self.complaint_id = complaint_id
        self.subscription = subscription
        self.history = history
        self.cursor = history[-1].seq if history else 0

    def __aiter__(self):
        return self._stream()

    async def _stream(self) -> AsyncIterator[MessageRead]:
        while True:
            try:
                message = await self.subscription.get()
            except SubscriptionLagged:
                logger.info("live_feed_resync", complaint_id=str(self.complaint_id), cursor=self.cursor)
                self.subscription.reset()
                for missed in await self._catch_up():
                    yield missed
                continue

            if message.seq <= self.cursor:
                continue
            if message.seq > self.cursor + 1:
                # Published out of order; fill the gap from the store
                for missed in await self._catch_up():
                    yield missed
                continue

            self.cursor = message.seq
            yield message

    async def _catch_up(self) -> List[MessageRead]:
        missed = await self.thread.load_and_release(self.complaint_id, after_seq=self.cursor)
        if missed:
            self.cursor = missed[-1].seq
        return missed


class MessageThread:
    def __init__(self, session: AsyncSession, channel: LiveChannel = live_channel):
        self.session = session
        self.channel = channel

    async def post(self, complaint_id: UUID, text: str, actor: Actor) -> Optional[MessageRead]:
        """
        Append a message and publish it to live viewers.
        Blank text is ignored: nothing is written or published, returns None.
        """
        if text is None or not text.strip():
            logger.info("blank_message_ignored", complaint_id=str(complaint_id), user_id=str(actor.user_id))
            return None
        if len(text) > settings.MESSAGE_MAX_LENGTH:
            raise ValidationFailedError(
                f"Message exceeds {settings.MESSAGE_MAX_LENGTH} characters",
                complaint_id=complaint_id,
            )

        await ComplaintService.get(self.session, complaint_id, actor)

        row = None
        for attempt in range(1, settings.MESSAGE_POST_RETRIES + 1):
            async with store_errors("post message"):
                seq, created_at = await self._next_position(complaint_id)
                row = ComplaintMessage(
                    complaint_id=complaint_id,
                    seq=seq,
                    user_id=actor.user_id,
                    message=text,
                    # Derived from the resolved identity, never from the client
                    is_staff_response=actor.is_staff,
                    created_at=created_at,
                )
                self.session.add(row)
                try:
                    await self.session.commit()
                    break
                except IntegrityError:
                    await self.session.rollback()
                    logger.warning("message_seq_collision", complaint_id=str(complaint_id), seq=seq, attempt=attempt)
                    row = None
        if row is None:
            raise ConcurrentModificationError("Could not append message, please retry", complaint_id=complaint_id)

        message = MessageRead(
            id=row.id,
            complaint_id=row.complaint_id,
            seq=row.seq,
            user_id=row.user_id,
            author_name=await self._author_name(actor.user_id),
            message=row.message,
            is_staff_response=row.is_staff_response,
            created_at=row.created_at,
        )
        delivered = self.channel.publish(message)
        logger.info(
            "message_posted",
            complaint_id=str(complaint_id),
            message_id=str(message.id),
            seq=message.seq,
            is_staff_response=message.is_staff_response,
            live_subscribers=delivered,
        )
        return message

    async def history(self, complaint_id: UUID, actor: Actor, after_seq: int = 0) -> List[MessageRead]:
        await ComplaintService.get(self.session, complaint_id, actor)
        return await self.load(complaint_id, after_seq=after_seq)

    @asynccontextmanager
    async def follow(self, complaint_id: UUID, actor: Actor) -> AsyncIterator[ThreadFeed]:
        """
        Subscribe first, then load history, so nothing published in between
        is lost. The subscription is released when the block exits.
        """
        await ComplaintService.get(self.session, complaint_id, actor)
        async with self.channel.subscribe(complaint_id) as subscription:
            history = await self.load_and_release(complaint_id)
            yield ThreadFeed(self, complaint_id, subscription, history)

    async def load(self, complaint_id: UUID, after_seq: int = 0) -> List[MessageRead]:
        stmt = (
            select(ComplaintMessage, Profile.full_name)
            .outerjoin(Profile, Profile.id == ComplaintMessage.user_id)
            .where(ComplaintMessage.complaint_id == complaint_id, ComplaintMessage.seq > after_seq)
            .order_by(ComplaintMessage.seq.asc())
        )
        async with store_errors("load messages"):
            result = await self.session.execute(stmt)
            rows = result.all()

        return [
            MessageRead(
                id=msg.id,
                complaint_id=msg.complaint_id,
                seq=msg.seq,
                user_id=msg.user_id,
                author_name=full_name or UNKNOWN_NAME,
                message=msg.message,
                is_staff_response=msg.is_staff_response,
                created_at=_aware(msg.created_at),
            )
            for msg, full_name in rows
        ]

    async def load_and_release(self, complaint_id: UUID, after_seq: int = 0) -> List[MessageRead]:
        """
        `load`, then end the read transaction. A live viewer may sit idle for
        a long time and must not hold a connection while it waits.
        """
        messages = await self.load(complaint_id, after_seq=after_seq)
        await self.session.rollback()
        return messages

    async def _next_position(self, complaint_id: UUID):
        stmt = (
            select(ComplaintMessage.seq, ComplaintMessage.created_at)
            .where(ComplaintMessage.complaint_id == complaint_id)
            .order_by(desc(ComplaintMessage.seq))
            .limit(1)
        )
        result = await self.session.execute(stmt)
        last = result.first()

        now = get_utc_now()
        if last is None:
            return 1, now
        return last.seq + 1, max(now, _aware(last.created_at))

    async def _author_name(self, user_id: UUID) -> str:
        async with store_errors("load author name"):
            result = await self.session.execute(select(Profile.full_name).where(Profile.id == user_id))
            return result.scalar_one_or_none() or UNKNOWN_NAME
