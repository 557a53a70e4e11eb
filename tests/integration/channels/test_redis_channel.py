"""
Integration tests for the Redis Streams channel.

Requirements:
- Docker must be running
- testcontainers package must be installed
- redis package must be installed

Tests are automatically skipped if these requirements are not met.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from outputmatcher.channels.redis import REDIS_AVAILABLE
from outputmatcher.listener import ListenerConfig, ReplayStrategy, TopicListener
from outputmatcher.output import OutputMatcher
from outputmatcher.predicates import equals, matches_regex
from tests.fixtures import wait_for_consumed

from ..conftest import skip_if_no_redis_infra

if not REDIS_AVAILABLE:
    pytest.skip("redis package not available", allow_module_level=True)

from outputmatcher.channels.redis import (  # noqa: E402
    RedisStreamChannel,
    RedisStreamChannelConfig,
)

pytestmark = [
    pytest.mark.integration,
    pytest.mark.redis,
    skip_if_no_redis_infra,
]


@pytest.fixture
def make_listener(
    redis_connection_url: str,
    channel_name: str,
    broker_listener_config: ListenerConfig,
) -> Callable[..., TopicListener]:
    """Factory for unstarted listeners on the test stream."""

    def _make(**config_kwargs: Any) -> TopicListener:
        config = RedisStreamChannelConfig(
            redis_url=redis_connection_url,
            stream=channel_name,
            **config_kwargs,
        )
        return TopicListener(RedisStreamChannel(config), broker_listener_config)

    return _make


class TestRedisStreamRewind:
    """Rewind-based race recovery on a real stream."""

    @pytest.mark.asyncio
    async def test_late_matcher_sees_consumed_entry(
        self,
        redis_client: Any,
        channel_name: str,
        make_listener: Callable[..., TopicListener],
    ) -> None:
        entry_id = await redis_client.xadd(channel_name, {"data": "HELLO WORLD", "source": "svc"})

        async with make_listener() as listener:
            assert listener.strategy is ReplayStrategy.REWIND
            await wait_for_consumed(listener, 1, timeout=10.0)

            [message] = await OutputMatcher(listener).wait_for(equals("HELLO WORLD"), timeout=10.0)

        assert message.message_id == entry_id
        assert message.headers == {"source": "svc"}
        assert listener.stats.rewinds == 1

    @pytest.mark.asyncio
    async def test_start_from_latest_rewinds_into_history(
        self,
        redis_client: Any,
        channel_name: str,
        make_listener: Callable[..., TopicListener],
    ) -> None:
        await redis_client.xadd(channel_name, {"data": "before subscribe"})

        async with make_listener(start_from_latest=True) as listener:
            await redis_client.xadd(channel_name, {"data": "after subscribe"})
            await wait_for_consumed(listener, 1, timeout=10.0)
            assert listener.stats.messages_consumed == 1

            # Registration rewinds to the start of the stream
            [message] = await OutputMatcher(listener).wait_for(
                equals("before subscribe"), timeout=10.0
            )

        assert message.payload == "before subscribe"

    @pytest.mark.asyncio
    async def test_several_predicates_first_match_each(
        self,
        redis_client: Any,
        channel_name: str,
        make_listener: Callable[..., TopicListener],
    ) -> None:
        for n in range(1, 4):
            await redis_client.xadd(channel_name, {"data": f"retry {n}"})

        async with make_listener() as listener:
            retry, third = matches_regex(r"retry \d"), equals("retry 3")
            first, last = await OutputMatcher(listener).wait_for(retry, third, timeout=10.0)

        assert first.payload == "retry 1"
        assert last.payload == "retry 3"
