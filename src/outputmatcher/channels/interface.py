"""Channel interface definitions.

A channel is the thin broker collaborator a ``TopicListener`` consumes from.
It hides the transport client and exposes only what output verification
needs: subscribe, fetch the next batch in delivery order, optionally rewind
to the start, and close.

Whether a channel can rewind is a static property of the broker
(``supports_rewind``), not something discovered at runtime. Log-structured
brokers (Kafka, Redis Streams) can; fire-and-forget brokers (RabbitMQ queues)
cannot.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import TracebackType
from typing import Any

from outputmatcher.exceptions import RewindNotSupportedError


@dataclass(frozen=True)
class ChannelMessage:
    """
    A consumed message, decoded and ready for matching.

    Attributes:
        message_id: Identifier unique within the channel. Replayed messages
            keep their original id, which is how matchers avoid evaluating
            the same message twice after a rewind.
        payload: Decoded message content; predicates are evaluated against it.
        key: Raw message key, if the broker has one.
        headers: Message headers decoded as text.
        timestamp: Broker timestamp where available, otherwise consume time.
    """

    message_id: str
    payload: Any
    key: bytes | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class Channel(ABC):
    """
    Abstract output channel for a single topic, stream or queue.

    Implementations are used by exactly one listener and are only driven
    from that listener's consume task, so they need not be thread-safe.

    Example:
        >>> channel = KafkaChannel(KafkaChannelConfig(topic="orders.out"))
        >>> await channel.subscribe()
        >>> batch = await channel.fetch(timeout=0.5)
        >>> await channel.reset_position()
        >>> await channel.close()
    """

    supports_rewind: bool = False
    messaging_system: str = "unknown"

    @property
    @abstractmethod
    def name(self) -> str:
        """Logical name of the channel (topic, stream or exchange)."""
        pass

    @abstractmethod
    async def subscribe(self) -> None:
        """
        Connect to the broker and subscribe to the channel.

        Raises:
            Exception: Transport errors; the listener wraps them in
                SubscriptionError.
        """
        pass

    @abstractmethod
    async def fetch(self, timeout: float) -> list[ChannelMessage]:
        """
        Return the next batch of messages in delivery order.

        Args:
            timeout: Maximum time to wait for messages in seconds

        Returns:
            Messages received, or an empty list when the timeout elapsed
        """
        pass

    async def reset_position(self) -> None:
        """
        Rewind consumption to the start of the channel.

        All history is re-delivered by subsequent fetch() calls, with the
        original message ids.

        Raises:
            RewindNotSupportedError: If the broker cannot rewind
        """
        raise RewindNotSupportedError(self.name)

    @abstractmethod
    async def close(self) -> None:
        """Release the subscription. Safe to call multiple times."""
        pass

    async def __aenter__(self) -> Channel:
        await self.subscribe()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()


__all__ = [
    "Channel",
    "ChannelMessage",
]
