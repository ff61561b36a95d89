"""Change notifications for task rows, fanned out per owner.

Events are delivered in-process to every subscriber of the owning user. When
Redis is configured and the relay is running, events go through a Redis
pub/sub channel first so subscribers on other workers see them too.
"""

import asyncio
import contextlib
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from pydantic import ValidationError
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from src.core.config import constants
from src.core.redis_client import RedisClient, redis_client
from src.domain.events import ChangeEvent


logger = logging.getLogger(__name__)


class Subscription:
    """Handle for one subscriber's event queue.

    Iterate it with `async for`, or poll with `next_event(timeout=...)`.
    """

    def __init__(self, user_id: str, queue: asyncio.Queue[ChangeEvent]) -> None:
        self.user_id = user_id
        self._queue = queue

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        return await self._queue.get()

    async def next_event(self, timeout: float | None = None) -> ChangeEvent | None:
        """Wait for the next event; None if `timeout` elapses first."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except TimeoutError:
            return None

    def pending(self) -> int:
        """Number of queued, undelivered events."""
        return self._queue.qsize()


class ChangeFeed:
    """Per-owner publish/subscribe hub for task change events."""

    def __init__(self, *, redis: RedisClient | None = None, queue_maxlen: int | None = None) -> None:
        self._redis = redis
        self._queue_maxlen = queue_maxlen or constants.CHANGE_FEED_QUEUE_MAXLEN
        self._subscribers: dict[str, set[asyncio.Queue[ChangeEvent]]] = defaultdict(set)
        self._pubsub: PubSub | None = None
        self._relay_task: asyncio.Task[None] | None = None

    @staticmethod
    def channel_for(user_id: str) -> str:
        """Redis channel carrying one owner's events."""
        return f"{constants.CHANGE_FEED_CHANNEL_PREFIX}:{user_id}"

    @property
    def relaying(self) -> bool:
        """Whether events currently travel through Redis."""
        return self._relay_task is not None and not self._relay_task.done()

    def subscriber_count(self, user_id: str) -> int:
        """Number of live subscriptions for an owner."""
        return len(self._subscribers.get(user_id, ()))

    @asynccontextmanager
    async def subscribe(self, user_id: str) -> AsyncIterator[Subscription]:
        """Subscribe to one owner's events for the duration of the block.

        The subscription is released when the block exits, however it exits.
        """
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=self._queue_maxlen)
        self._subscribers[user_id].add(queue)
        logger.debug("Change feed subscriber added", extra={"user_id": user_id})
        try:
            yield Subscription(user_id, queue)
        finally:
            queues = self._subscribers.get(user_id)
            if queues is not None:
                queues.discard(queue)
                if not queues:
                    del self._subscribers[user_id]
            logger.debug("Change feed subscriber released", extra={"user_id": user_id})

    async def publish(self, event: ChangeEvent) -> None:
        """Publish an event to the owner's subscribers.

        Falls back to in-process delivery if Redis rejects the message.
        """
        if self.relaying and self._redis is not None:
            published = await self._redis.publish(self.channel_for(event.user_id), event.model_dump_json(by_alias=True))
            if published:
                return
            logger.warning("Falling back to in-process delivery", extra={"task_id": event.task_id})
        self.deliver(event)

    def deliver(self, event: ChangeEvent) -> None:
        """Hand an event to every local subscriber of its owner.

        A lagging subscriber loses its oldest queued event.
        """
        for queue in list(self._subscribers.get(event.user_id, ())):
            if queue.full():
                dropped = queue.get_nowait()
                logger.warning(
                    "Change feed subscriber lagging, dropped oldest event",
                    extra={"user_id": event.user_id, "dropped_task_id": dropped.task_id},
                )
            queue.put_nowait(event)

    async def start_relay(self) -> bool:
        """Start relaying Redis pub/sub messages to local subscribers.

        Returns:
            True if the relay is running, False if Redis is not available
        """
        if self.relaying:
            return True
        if self._redis is None:
            return False

        pubsub = self._redis.pubsub()
        if pubsub is None:
            return False

        try:
            await pubsub.psubscribe(f"{constants.CHANGE_FEED_CHANNEL_PREFIX}:*")
        except RedisError as e:
            logger.warning("Change feed relay unavailable: %s", e)
            await pubsub.aclose()
            return False

        self._pubsub = pubsub
        self._relay_task = asyncio.create_task(self._relay(pubsub))
        logger.info("Change feed relay started")
        return True

    async def stop_relay(self) -> None:
        """Stop the Redis relay if it is running."""
        if self._relay_task is not None:
            self._relay_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._relay_task
            self._relay_task = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
            logger.info("Change feed relay stopped")

    async def _relay(self, pubsub: PubSub) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "pmessage":
                    continue
                try:
                    event = ChangeEvent.model_validate_json(message["data"])
                except ValidationError as e:
                    logger.warning("Discarding malformed change event: %s", e)
                    continue
                self.deliver(event)
        except RedisError:
            logger.exception("Change feed relay lost its Redis connection")


# Global change feed instance
change_feed = ChangeFeed(redis=redis_client)
