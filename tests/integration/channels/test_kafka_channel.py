"""
Integration tests for the Kafka channel.

These tests verify against a real broker:
- Rewind recovery for matchers registered after their message was consumed
- Matchers registered before their message is produced
- JSON payloads, keys and headers
- That verification never commits offsets

Requirements:
- Docker must be running
- testcontainers-kafka package must be installed
- aiokafka package must be installed

Tests are automatically skipped if these requirements are not met.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from typing import Any

import pytest
import pytest_asyncio

from outputmatcher.channels.codecs import JsonDecoder
from outputmatcher.channels.kafka import KAFKA_AVAILABLE
from outputmatcher.listener import ListenerConfig, ReplayStrategy, TopicListener
from outputmatcher.output import OutputMatcher
from outputmatcher.predicates import contains, equals, has_fields
from outputmatcher.waiting import async_wait_until
from tests.fixtures import wait_for_consumed

from ..conftest import DOCKER_AVAILABLE, TESTCONTAINERS_AVAILABLE

# ============================================================================
# Testcontainers Detection
# ============================================================================

KAFKA_TESTCONTAINERS_AVAILABLE = False

try:
    from testcontainers.kafka import KafkaContainer

    KAFKA_TESTCONTAINERS_AVAILABLE = True
except ImportError:
    KafkaContainer = None  # type: ignore[assignment, misc]


# ============================================================================
# Skip Conditions
# ============================================================================

skip_if_no_kafka_infra = pytest.mark.skipif(
    not (
        TESTCONTAINERS_AVAILABLE
        and DOCKER_AVAILABLE
        and KAFKA_AVAILABLE
        and KAFKA_TESTCONTAINERS_AVAILABLE
    ),
    reason="Kafka test infrastructure not available (requires testcontainers-kafka, docker, and aiokafka)",
)

# Skip all tests if Kafka is not available
if not KAFKA_AVAILABLE:
    pytest.skip("Kafka (aiokafka) not available", allow_module_level=True)

from aiokafka import AIOKafkaProducer  # noqa: E402

from outputmatcher.channels.kafka import KafkaChannel, KafkaChannelConfig  # noqa: E402

pytestmark = [
    pytest.mark.integration,
    pytest.mark.kafka,
    skip_if_no_kafka_infra,
]

Send = Callable[..., Awaitable[None]]


# ============================================================================
# Kafka Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def kafka_container() -> Generator[Any, None, None]:
    """
    Provide Kafka container for integration tests.

    Container is shared across all tests in the session for efficiency.
    """
    if not KAFKA_TESTCONTAINERS_AVAILABLE or not DOCKER_AVAILABLE:
        pytest.skip("Kafka testcontainer not available")

    container = KafkaContainer("confluentinc/cp-kafka:7.5.0")
    container.start()

    # Give Kafka time to fully initialize
    import time

    time.sleep(5)

    yield container

    container.stop()


@pytest.fixture(scope="session")
def kafka_bootstrap_servers(kafka_container: Any) -> str:
    """Get Kafka bootstrap servers from container."""
    return kafka_container.get_bootstrap_server()


@pytest_asyncio.fixture
async def send(kafka_bootstrap_servers: str, channel_name: str) -> AsyncGenerator[Send, None]:
    """Produce records to the test topic, standing in for the application."""
    producer = AIOKafkaProducer(bootstrap_servers=kafka_bootstrap_servers)
    await producer.start()

    async def _send(
        value: str | bytes,
        *,
        key: bytes | None = None,
        headers: list[tuple[str, bytes]] | None = None,
    ) -> None:
        payload = value.encode("utf-8") if isinstance(value, str) else value
        await producer.send_and_wait(channel_name, value=payload, key=key, headers=headers)

    yield _send

    await producer.stop()


@pytest.fixture
def make_listener(
    kafka_bootstrap_servers: str,
    channel_name: str,
    broker_listener_config: ListenerConfig,
) -> Callable[..., TopicListener]:
    """Factory for unstarted listeners on the test topic."""

    def _make(**channel_kwargs: Any) -> TopicListener:
        config = KafkaChannelConfig(bootstrap_servers=kafka_bootstrap_servers, topic=channel_name)
        return TopicListener(KafkaChannel(config, **channel_kwargs), broker_listener_config)

    return _make


# ============================================================================
# Tests
# ============================================================================


class TestKafkaRewind:
    """Rewind-based race recovery on a real topic."""

    def test_defaults_to_rewind(self, make_listener: Callable[..., TopicListener]) -> None:
        assert make_listener().strategy is ReplayStrategy.REWIND

    @pytest.mark.asyncio
    async def test_late_matcher_sees_consumed_message(
        self, send: Send, make_listener: Callable[..., TopicListener]
    ) -> None:
        await send("HELLO WORLD")
        async with make_listener() as listener:
            await wait_for_consumed(listener, 1, timeout=30.0)

            [message] = await OutputMatcher(listener).wait_for(
                equals("HELLO WORLD"), timeout=15.0
            )

        assert message.message_id.endswith(":0:0")
        assert listener.stats.rewinds >= 1

    @pytest.mark.asyncio
    async def test_matcher_registered_before_message(
        self, send: Send, make_listener: Callable[..., TopicListener]
    ) -> None:
        # Creates the topic so the consumer has a partition to read
        await send("warm-up")
        async with make_listener() as listener:
            output = OutputMatcher(listener)
            shipped = contains("ORDER-42")
            assert not output.matches(shipped)

            await send("ORDER-42 SHIPPED")
            [message] = await output.wait_for(shipped, timeout=15.0)

        assert message.payload == "ORDER-42 SHIPPED"

    @pytest.mark.asyncio
    async def test_json_payload_key_and_headers(
        self, send: Send, make_listener: Callable[..., TopicListener]
    ) -> None:
        await send(
            json.dumps({"order_id": "42", "status": "shipped"}),
            key=b"order-42",
            headers=[("source", b"fulfilment")],
        )
        await send(b"not json")

        async with make_listener(decoder=JsonDecoder()) as listener:
            [message] = await OutputMatcher(listener).wait_for(
                has_fields(status="shipped"), timeout=15.0
            )
            await async_wait_until(lambda: listener.channel.decode_errors >= 1, timeout=15.0)

        assert message.key == b"order-42"
        assert message.headers == {"source": "fulfilment"}

    def test_consumes_without_consumer_group(
        self, make_listener: Callable[..., TopicListener]
    ) -> None:
        listener = make_listener()
        config = listener.channel.config.get_consumer_config()
        assert config["group_id"] is None
        assert config["enable_auto_commit"] is False
