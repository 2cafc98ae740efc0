"""
Push invalidation: Redis pub/sub events mark cached lists stale.

The API publishes ``<resource>:<event>`` (e.g. ``servers:changed``,
``tasks:created``) whenever a resource kind changes. The listener
pattern-subscribes to the configured events and invalidates the query cache
by resource kind, which refetches every observed list of that kind in the
background without clearing what is shown.
"""
import asyncio
import contextlib
import logging
from collections.abc import Sequence
from typing import Any

from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from console_query.core.config import get_settings
from console_query.core.redis import RedisClient
from console_query.services.query_cache import QueryCache

logger = logging.getLogger(__name__)


def _text(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class InvalidationListener:
    """
    Background task relaying pub/sub events to ``QueryCache.invalidate``.

    Args:
        redis: Connected (or degraded) Redis client.
        cache: Cache to invalidate.
        events: Event suffixes to listen for; defaults to the configured
            ``invalidation_events``.
        poll_timeout: Seconds to wait for a message per poll.
    """

    def __init__(
        self,
        redis: RedisClient,
        cache: QueryCache,
        events: Sequence[str] | None = None,
        poll_timeout: float = 1.0,
    ) -> None:
        self._redis = redis
        self._cache = cache
        self._events = tuple(events if events is not None else get_settings().invalidation_events)
        self._poll_timeout = poll_timeout
        self._pubsub: PubSub | None = None
        self._task: asyncio.Task | None = None

    @property
    def patterns(self) -> list[str]:
        return [f"*:{event}" for event in self._events]

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def resource_for(self, channel: str | bytes) -> str | None:
        """Resource kind named by a channel such as ``servers:changed``; None if not ours."""
        resource, sep, event = _text(channel).rpartition(":")
        if not sep or not resource or event not in self._events:
            return None
        return resource

    def handle_message(self, message: dict[str, Any]) -> int | None:
        """
        Invalidate the resource named by one pub/sub message.

        Returns:
            Number of cache entries marked stale, or None if the message was ignored.
        """
        if message.get("type") not in ("message", "pmessage"):
            return None
        resource = self.resource_for(message.get("channel", b""))
        if resource is None:
            logger.debug("invalidation_ignored channel=%s", message.get("channel"))
            return None
        return self._cache.invalidate(resource)

    async def start(self) -> bool:
        """
        Subscribe and start relaying events.

        Returns:
            False if Redis is unavailable; the console then runs without push invalidation.
        """
        if self.is_running:
            return True
        if not self._events:
            logger.info("invalidation_listener_disabled reason=no_events")
            return False
        pubsub = self._redis.pubsub()
        if pubsub is None:
            logger.warning("invalidation_listener_unavailable reason=redis_not_connected")
            return False
        try:
            await pubsub.psubscribe(*self.patterns)
        except RedisError as e:
            logger.warning("invalidation_listener_unavailable reason=%s", e)
            await pubsub.aclose()
            return False
        self._pubsub = pubsub
        self._task = asyncio.create_task(self._run(pubsub), name="invalidation_listener")
        logger.info("invalidation_listener_started patterns=%s", ",".join(self.patterns))
        return True

    async def stop(self) -> None:
        """Stop relaying and close the pub/sub connection."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._pubsub is not None:
            try:
                await self._pubsub.punsubscribe()
            except RedisError as e:
                logger.warning("invalidation_listener_unsubscribe_failed error=%s", e)
            await self._pubsub.aclose()
            self._pubsub = None
            logger.info("invalidation_listener_stopped")

    async def _run(self, pubsub: PubSub) -> None:
        while True:
            try:
                message = await pubsub.get_message(timeout=self._poll_timeout)
            except RedisError as e:
                logger.warning("invalidation_listener_lost error=%s", e)
                return
            if message is not None:
                self.handle_message(message)
