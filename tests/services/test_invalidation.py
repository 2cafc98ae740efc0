"""Tests for Redis-driven cache invalidation."""
import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import RedisError

from console_query.core.redis import RedisClient
from console_query.schemas.filters import AdvancedFilterRequest
from console_query.services.invalidation import InvalidationListener
from console_query.services.query_cache import QueryCache, make_query_key

EVENTS = ("changed", "deleted")


def _pubsub(messages: list[Any] | None = None) -> MagicMock:
    pubsub = MagicMock()
    pubsub.psubscribe = AsyncMock()
    pubsub.punsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()
    pubsub.get_message = AsyncMock(side_effect=messages or [])
    return pubsub


def _redis(pubsub: MagicMock | None) -> MagicMock:
    redis = MagicMock(spec=RedisClient)
    redis.pubsub.return_value = pubsub
    return redis


def _message(channel: bytes, kind: str = "pmessage") -> dict[str, Any]:
    return {"type": kind, "pattern": b"*:changed", "channel": channel, "data": b"1"}


class TestMessageRouting:
    """Tests for channel parsing and message handling."""

    def test__patterns(self) -> None:
        listener = InvalidationListener(_redis(None), MagicMock(), events=EVENTS)
        assert listener.patterns == ["*:changed", "*:deleted"]

    def test__events__default_to_settings(self) -> None:
        listener = InvalidationListener(_redis(None), MagicMock())
        assert "*:updated" in listener.patterns

    def test__resource_for(self) -> None:
        listener = InvalidationListener(_redis(None), MagicMock(), events=EVENTS)

        assert listener.resource_for(b"servers:changed") == "servers"
        assert listener.resource_for("tenant:7:credentials:deleted") == "tenant:7:credentials"
        assert listener.resource_for("servers:archived") is None
        assert listener.resource_for(":changed") is None
        assert listener.resource_for("changed") is None

    def test__handle_message__invalidates_resource(self) -> None:
        cache = MagicMock(spec=QueryCache)
        cache.invalidate.return_value = 2
        listener = InvalidationListener(_redis(None), cache, events=EVENTS)

        assert listener.handle_message(_message(b"servers:changed")) == 2
        cache.invalidate.assert_called_once_with("servers")

    def test__handle_message__ignores_other_types_and_channels(self) -> None:
        cache = MagicMock(spec=QueryCache)
        listener = InvalidationListener(_redis(None), cache, events=EVENTS)

        assert listener.handle_message(_message(b"servers:changed", kind="psubscribe")) is None
        assert listener.handle_message(_message(b"servers:archived")) is None
        cache.invalidate.assert_not_called()

    async def test__handle_message__refetches_observed_list(
        self, cache: QueryCache, credentials_api: Any,
    ) -> None:
        key = make_query_key("credentials", AdvancedFilterRequest(), "simple")
        observer = cache.observe(key, credentials_api.fetch_page)
        await observer.wait_until_idle()
        listener = InvalidationListener(_redis(None), cache, events=EVENTS)

        assert listener.handle_message(_message(b"credentials:changed", kind="message")) == 1
        await observer.wait_until_idle()

        assert credentials_api.calls == [1, 1]
        assert len(observer.items) == 20


class TestListenerLifecycle:
    """Tests for starting, running and stopping the listener."""

    async def test__start__redis_unavailable(self) -> None:
        listener = InvalidationListener(_redis(None), MagicMock(), events=EVENTS)

        assert await listener.start() is False
        assert not listener.is_running

    async def test__start__no_events(self) -> None:
        redis = _redis(_pubsub())
        listener = InvalidationListener(redis, MagicMock(), events=())

        assert await listener.start() is False
        redis.pubsub.assert_not_called()

    async def test__start__subscribe_failure_closes_pubsub(self) -> None:
        pubsub = _pubsub()
        pubsub.psubscribe.side_effect = RedisError("refused")
        listener = InvalidationListener(_redis(pubsub), MagicMock(), events=EVENTS)

        assert await listener.start() is False
        pubsub.aclose.assert_awaited_once()

    async def test__run__relays_messages_until_connection_lost(
        self, settle_loop: Any,
    ) -> None:
        pubsub = _pubsub([_message(b"servers:changed"), None, RedisError("lost")])
        cache = MagicMock(spec=QueryCache)
        listener = InvalidationListener(_redis(pubsub), cache, events=EVENTS)

        assert await listener.start() is True
        pubsub.psubscribe.assert_awaited_once_with("*:changed", "*:deleted")
        await settle_loop()

        assert not listener.is_running
        cache.invalidate.assert_called_once_with("servers")
        await listener.stop()
        pubsub.aclose.assert_awaited_once()

    async def test__stop__cancels_running_listener(self, settle_loop: Any) -> None:
        async def quiet(timeout: float) -> None:
            await asyncio.sleep(timeout)

        pubsub = _pubsub()
        pubsub.get_message.side_effect = quiet
        listener = InvalidationListener(
            _redis(pubsub), MagicMock(), events=EVENTS, poll_timeout=0.01,
        )
        assert await listener.start() is True
        assert await listener.start() is True
        await settle_loop()
        assert listener.is_running

        await listener.stop()

        assert not listener.is_running
        pubsub.punsubscribe.assert_awaited_once()
        pubsub.aclose.assert_awaited_once()
