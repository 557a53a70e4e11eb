"""Redis Streams channel implementation.

Streams keep their entries, so this channel supports rewinding: the reader
tracks the last entry id it has seen and a rewind resets it to ``0-0``.
Entries are read with plain ``XREAD`` (no consumer group), so nothing is
acknowledged and the application's own consumers are unaffected.

Example:
    >>> from outputmatcher.channels.redis import RedisStreamChannel, RedisStreamChannelConfig
    >>>
    >>> config = RedisStreamChannelConfig(
    ...     redis_url="redis://localhost:6379",
    ...     stream="orders.out",
    ... )
    >>> listener = TopicListener(RedisStreamChannel(config))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from outputmatcher.channels.codecs import PayloadDecoder, TextDecoder
from outputmatcher.channels.interface import Channel, ChannelMessage
from outputmatcher.exceptions import PayloadDecodeError, RedisNotAvailableError

# Optional Redis import - fail gracefully if not installed
try:
    import redis.asyncio as aioredis
    from redis.asyncio import Redis

    REDIS_AVAILABLE = True
except ImportError:
    REDIS_AVAILABLE = False
    aioredis = None  # type: ignore[assignment]
    Redis = None  # type: ignore[assignment, misc]

logger = logging.getLogger(__name__)

_STREAM_START = "0-0"


@dataclass
class RedisStreamChannelConfig:
    """Configuration for a Redis Streams output channel.

    Attributes:
        redis_url: Redis connection URL.
        stream: Stream key the application under test appends to.
        payload_field: Entry field holding the message body. The remaining
            fields are exposed as headers.
        batch_size: Maximum entries returned by one fetch.
        start_from_latest: If True, entries already in the stream when the
            channel subscribes are skipped until the first rewind.
        socket_timeout: Socket timeout in seconds.
        socket_connect_timeout: Connection timeout in seconds.
    """

    redis_url: str = "redis://localhost:6379"
    stream: str = "output"
    payload_field: str = "data"
    batch_size: int = 100
    start_from_latest: bool = False
    socket_timeout: float | None = None
    socket_connect_timeout: float = 5.0

    def __post_init__(self) -> None:
        if not self.stream:
            raise ValueError("stream must not be empty")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")


class RedisStreamChannel(Channel):
    """Replayable channel over a single Redis stream."""

    supports_rewind = True
    messaging_system = "redis"

    def __init__(
        self,
        config: RedisStreamChannelConfig | None = None,
        decoder: PayloadDecoder | None = None,
    ) -> None:
        """
        Initialize the Redis stream channel.

        Args:
            config: Connection configuration. Uses defaults if None.
            decoder: Payload decoder. Defaults to UTF-8 text.

        Raises:
            RedisNotAvailableError: If redis is not installed.
        """
        if not REDIS_AVAILABLE:
            raise RedisNotAvailableError()

        self._config = config or RedisStreamChannelConfig()
        self._decoder = decoder or TextDecoder()
        self._redis: Redis | None = None
        self._last_id: str = _STREAM_START
        self._decode_errors = 0

    @property
    def name(self) -> str:
        return self._config.stream

    @property
    def config(self) -> RedisStreamChannelConfig:
        return self._config

    @property
    def decode_errors(self) -> int:
        return self._decode_errors

    @property
    def last_id(self) -> str:
        """Id of the last entry delivered by fetch()."""
        return self._last_id

    async def subscribe(self) -> None:
        if self._redis is not None:
            logger.warning("RedisStreamChannel already subscribed", extra={"stream": self.name})
            return

        client = aioredis.from_url(
            self._config.redis_url,
            decode_responses=False,
            socket_timeout=self._config.socket_timeout,
            socket_connect_timeout=self._config.socket_connect_timeout,
        )
        try:
            await client.ping()
            self._last_id = _STREAM_START
            if self._config.start_from_latest:
                latest = await client.xrevrange(self._config.stream, count=1)
                if latest:
                    self._last_id = _as_str(latest[0][0])
        except Exception:
            await client.aclose()
            raise

        self._redis = client
        logger.info(
            "Subscribed to Redis stream",
            extra={
                "redis_url": self._config.redis_url,
                "stream": self.name,
                "start_id": self._last_id,
            },
        )

    async def fetch(self, timeout: float) -> list[ChannelMessage]:
        if self._redis is None:
            raise RuntimeError("Not subscribed to Redis. Call subscribe() first.")

        # block=0 would wait forever
        block_ms = max(int(timeout * 1000), 1)
        response = await self._redis.xread(
            {self._config.stream: self._last_id},
            count=self._config.batch_size,
            block=block_ms,
        )
        messages: list[ChannelMessage] = []
        for _stream_name, entries in response or []:
            for entry_id, fields in entries:
                self._last_id = _as_str(entry_id)
                message = self._to_message(self._last_id, fields)
                if message is not None:
                    messages.append(message)
        return messages

    async def reset_position(self) -> None:
        self._last_id = _STREAM_START
        logger.debug("Redis stream reader rewound", extra={"stream": self.name})

    async def close(self) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.aclose()
        except Exception as e:
            logger.warning(f"Error closing Redis connection: {e}")
        self._redis = None
        logger.info("Unsubscribed from Redis stream", extra={"stream": self.name})

    def _to_message(self, entry_id: str, fields: dict[Any, Any]) -> ChannelMessage | None:
        decoded_fields = {_as_str(k): v for k, v in fields.items()}
        raw = decoded_fields.pop(self._config.payload_field, b"")
        if isinstance(raw, str):
            raw = raw.encode("utf-8")
        try:
            payload = self._decoder.decode(raw)
        except PayloadDecodeError as e:
            self._decode_errors += 1
            logger.warning(
                f"Skipping undecodable stream entry {entry_id}: {e}",
                extra={"stream": self.name, "entry_id": entry_id},
            )
            return None

        # Entry ids are "<milliseconds>-<sequence>"
        millis = int(entry_id.split("-", 1)[0])
        return ChannelMessage(
            message_id=entry_id,
            payload=payload,
            headers={k: _as_str(v) for k, v in decoded_fields.items()},
            timestamp=datetime.fromtimestamp(millis / 1000, tz=UTC),
        )


def _as_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


__all__ = [
    "REDIS_AVAILABLE",
    "RedisStreamChannel",
    "RedisStreamChannelConfig",
]
