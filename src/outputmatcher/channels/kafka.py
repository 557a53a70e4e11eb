"""Kafka channel implementation using aiokafka.

Kafka topics are log-structured, so this channel supports rewinding: a
listener with the ``REWIND`` strategy seeks every assigned partition back to
the beginning whenever a new matcher is registered, and the whole topic
history is re-delivered.

By default the consumer joins no consumer group. It is assigned every
partition of the topic, never commits offsets, and does not take partitions
away from the application under test.

Example:
    >>> from outputmatcher.channels.kafka import KafkaChannel, KafkaChannelConfig
    >>>
    >>> config = KafkaChannelConfig(
    ...     bootstrap_servers="localhost:9092",
    ...     topic="uppercase.out",
    ... )
    >>> listener = TopicListener(KafkaChannel(config))
    >>> await listener.start()
"""

from __future__ import annotations

import logging
import socket
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from outputmatcher.channels.codecs import PayloadDecoder, TextDecoder
from outputmatcher.channels.interface import Channel, ChannelMessage
from outputmatcher.exceptions import KafkaNotAvailableError, PayloadDecodeError

# Optional aiokafka import - fail gracefully if not installed
try:
    from aiokafka import AIOKafkaConsumer

    KAFKA_AVAILABLE = True
except ImportError:
    KAFKA_AVAILABLE = False
    AIOKafkaConsumer = None

logger = logging.getLogger(__name__)


@dataclass
class KafkaChannelConfig:
    """Configuration for a Kafka output channel.

    Attributes:
        bootstrap_servers: Kafka broker addresses (comma-separated).
        topic: Topic the application under test writes its output to.
        consumer_group: Optional consumer group. None (default) consumes
            without group coordination and without committing offsets.
        consumer_name: Client id. Auto-generated from hostname and UUID if
            not provided.
        max_records: Maximum records returned by one fetch.
        security_protocol: "PLAINTEXT", "SSL", "SASL_PLAINTEXT" or "SASL_SSL".
        sasl_mechanism: SASL mechanism when using SASL_* protocol.
        sasl_username: Username for SASL authentication.
        sasl_password: Password for SASL authentication.
        ssl_cafile: Path to CA certificate file.

    Raises:
        ValueError: If the topic is empty or the security configuration is
            inconsistent.
    """

    bootstrap_servers: str = "localhost:9092"
    topic: str = "output"
    consumer_group: str | None = None
    consumer_name: str | None = None
    max_records: int = 500

    # Security
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str | None = None
    sasl_username: str | None = None
    sasl_password: str | None = None
    ssl_cafile: str | None = None

    def __post_init__(self) -> None:
        if not self.topic:
            raise ValueError("topic must not be empty")
        if self.max_records < 1:
            raise ValueError(f"max_records must be positive, got {self.max_records}")
        if self.consumer_name is None:
            hostname = socket.gethostname()
            unique_id = uuid.uuid4().hex[:8]
            self.consumer_name = f"outputmatcher-{hostname}-{unique_id}"
        self._validate_security_config()

    def _validate_security_config(self) -> None:
        valid_protocols = {"PLAINTEXT", "SSL", "SASL_PLAINTEXT", "SASL_SSL"}
        if self.security_protocol not in valid_protocols:
            raise ValueError(
                f"Invalid security_protocol: {self.security_protocol}. "
                f"Must be one of: {valid_protocols}"
            )
        if self.security_protocol.startswith("SASL_"):
            if not self.sasl_mechanism:
                raise ValueError(f"sasl_mechanism required for {self.security_protocol}")
            if not self.sasl_username or not self.sasl_password:
                raise ValueError("sasl_username and sasl_password required for SASL authentication")

    def get_consumer_config(self) -> dict[str, Any]:
        """Get aiokafka consumer configuration dict."""
        config: dict[str, Any] = {
            "bootstrap_servers": self.bootstrap_servers,
            "group_id": self.consumer_group,
            "client_id": self.consumer_name,
            "auto_offset_reset": "earliest",
            "enable_auto_commit": False,
            "security_protocol": self.security_protocol,
        }
        if self.sasl_mechanism:
            config["sasl_mechanism"] = self.sasl_mechanism
        if self.sasl_username:
            config["sasl_plain_username"] = self.sasl_username
        if self.sasl_password:
            config["sasl_plain_password"] = self.sasl_password
        if self.ssl_cafile:
            from aiokafka.helpers import create_ssl_context

            config["ssl_context"] = create_ssl_context(cafile=self.ssl_cafile)
        return config

    def get_sanitized_config(self) -> dict[str, Any]:
        """Get configuration for logging, with credentials masked."""
        return {
            "bootstrap_servers": self.bootstrap_servers,
            "topic": self.topic,
            "consumer_group": self.consumer_group,
            "consumer_name": self.consumer_name,
            "security_protocol": self.security_protocol,
            "sasl_username": self.sasl_username,
            "sasl_password": "***" if self.sasl_password else None,
        }


class KafkaChannel(Channel):
    """Replayable channel over a single Kafka topic."""

    supports_rewind = True
    messaging_system = "kafka"

    def __init__(
        self,
        config: KafkaChannelConfig | None = None,
        decoder: PayloadDecoder | None = None,
    ) -> None:
        """
        Initialize the Kafka channel.

        Args:
            config: Connection configuration. Uses defaults if None.
            decoder: Payload decoder. Defaults to UTF-8 text.

        Raises:
            KafkaNotAvailableError: If aiokafka is not installed.
        """
        if not KAFKA_AVAILABLE:
            raise KafkaNotAvailableError()

        self._config = config or KafkaChannelConfig()
        self._decoder = decoder or TextDecoder()
        self._consumer: AIOKafkaConsumer | None = None
        self._decode_errors = 0

    @property
    def name(self) -> str:
        return self._config.topic

    @property
    def config(self) -> KafkaChannelConfig:
        return self._config

    @property
    def decode_errors(self) -> int:
        return self._decode_errors

    @property
    def is_subscribed(self) -> bool:
        return self._consumer is not None

    async def subscribe(self) -> None:
        if self._consumer is not None:
            logger.warning("KafkaChannel already subscribed", extra={"topic": self.name})
            return

        logger.info("Subscribing to Kafka topic", extra=self._config.get_sanitized_config())
        consumer = AIOKafkaConsumer(self._config.topic, **self._config.get_consumer_config())
        try:
            await consumer.start()
        except Exception:
            try:
                await consumer.stop()
            except Exception as stop_error:
                logger.warning(f"Error stopping consumer after failed start: {stop_error}")
            raise
        self._consumer = consumer
        logger.info("Subscribed to Kafka topic", extra={"topic": self.name})

    async def fetch(self, timeout: float) -> list[ChannelMessage]:
        if self._consumer is None:
            raise RuntimeError("Not subscribed to Kafka. Call subscribe() first.")

        records = await self._consumer.getmany(
            timeout_ms=int(timeout * 1000),
            max_records=self._config.max_records,
        )
        messages: list[ChannelMessage] = []
        for partition_records in records.values():
            for record in partition_records:
                message = self._to_message(record)
                if message is not None:
                    messages.append(message)
        return messages

    async def reset_position(self) -> None:
        if self._consumer is None:
            raise RuntimeError("Not subscribed to Kafka. Call subscribe() first.")

        partitions = self._consumer.assignment()
        if not partitions:
            # Nothing assigned yet: consumption will start from the earliest offset anyway
            logger.debug("No partitions assigned, rewind is a no-op", extra={"topic": self.name})
            return
        await self._consumer.seek_to_beginning(*partitions)
        logger.debug(
            "Kafka consumer rewound to beginning",
            extra={
                "topic": self.name,
                "partitions": sorted(tp.partition for tp in partitions),
            },
        )

    async def close(self) -> None:
        if self._consumer is None:
            return
        try:
            await self._consumer.stop()
        except Exception as e:
            logger.warning(f"Error stopping consumer: {e}")
        self._consumer = None
        logger.info("Unsubscribed from Kafka topic", extra={"topic": self.name})

    def _to_message(self, record: Any) -> ChannelMessage | None:
        message_id = f"{record.topic}:{record.partition}:{record.offset}"
        try:
            payload = self._decoder.decode(record.value or b"")
        except PayloadDecodeError as e:
            self._decode_errors += 1
            logger.warning(
                f"Skipping undecodable Kafka record {message_id}: {e}",
                extra={"topic": record.topic, "partition": record.partition, "offset": record.offset},
            )
            return None

        headers = {
            key: value.decode("utf-8", errors="replace") if value is not None else ""
            for key, value in (record.headers or [])
        }
        timestamp = (
            datetime.fromtimestamp(record.timestamp / 1000, tz=UTC)
            if record.timestamp is not None
            else datetime.now(UTC)
        )
        return ChannelMessage(
            message_id=message_id,
            payload=payload,
            key=record.key,
            headers=headers,
            timestamp=timestamp,
        )


__all__ = [
    "KAFKA_AVAILABLE",
    "KafkaChannel",
    "KafkaChannelConfig",
]
