"""In-memory channel implementation.

Suitable for unit tests of the verification engine and for applications
under test that run in-process. It can behave like a log-structured broker
(``replayable=True``, history kept and rewindable) or like a fire-and-forget
broker (``replayable=False``, consumed messages are gone).
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from outputmatcher.channels.codecs import PayloadDecoder
from outputmatcher.channels.interface import Channel, ChannelMessage
from outputmatcher.exceptions import PayloadDecodeError, RewindNotSupportedError

logger = logging.getLogger(__name__)

# Sleep step while waiting for publishes from other threads
_POLL_STEP = 0.005


class InMemoryChannel(Channel):
    """
    In-process channel driven by ``publish()``.

    ``publish()`` is thread-safe, so the producing side may live on another
    thread than the listener's event loop.

    Example:
        >>> channel = InMemoryChannel("orders.out", replayable=False)
        >>> listener = TopicListener(channel)
        >>> await listener.start()
        >>> channel.publish({"order_id": "42"})
    """

    messaging_system = "memory"

    def __init__(
        self,
        name: str = "memory",
        *,
        replayable: bool = True,
        decoder: PayloadDecoder | None = None,
    ) -> None:
        """
        Initialize the channel.

        Args:
            name: Logical channel name
            replayable: If True the channel keeps history and supports
                reset_position(); if False consumed messages are discarded.
            decoder: Optional decoder applied to ``bytes`` payloads at
                consume time. Other payloads are delivered as published.
        """
        self._name = name
        self._replayable = replayable
        self._decoder = decoder
        self._lock = threading.Lock()
        self._log: list[ChannelMessage] = []
        self._published: list[Any] = []
        self._position = 0
        self._sequence = 0
        self._subscribed = False
        self._closed = False
        self._failure: BaseException | None = None
        self._subscribe_failure: BaseException | None = None
        self._decode_errors = 0

    @property
    def supports_rewind(self) -> bool:  # type: ignore[override]
        return self._replayable

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_subscribed(self) -> bool:
        return self._subscribed and not self._closed

    @property
    def published(self) -> list[Any]:
        """Copy of every payload published, in order."""
        with self._lock:
            return list(self._published)

    @property
    def decode_errors(self) -> int:
        return self._decode_errors

    def publish(
        self,
        payload: Any,
        *,
        key: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> ChannelMessage:
        """
        Publish a payload to the channel.

        Thread-safe: Can be called from any thread.

        Returns:
            The message as it will be delivered (before decoding)
        """
        with self._lock:
            self._sequence += 1
            message = ChannelMessage(
                message_id=f"{self._name}:{self._sequence}",
                payload=payload,
                key=key,
                headers=dict(headers or {}),
                timestamp=datetime.now(UTC),
            )
            self._log.append(message)
            self._published.append(payload)
        logger.debug(
            "Published message to in-memory channel",
            extra={"channel": self._name, "message_id": message.message_id},
        )
        return message

    def publish_many(self, payloads: Iterable[Any]) -> list[ChannelMessage]:
        """Publish several payloads in order."""
        return [self.publish(payload) for payload in payloads]

    def simulate_failure(self, error: BaseException, *, on_subscribe: bool = False) -> None:
        """
        Make the next fetch() (or subscribe()) raise ``error``.

        Used to exercise the listener's fatal-failure path.
        """
        if on_subscribe:
            self._subscribe_failure = error
        else:
            self._failure = error

    async def subscribe(self) -> None:
        if self._subscribe_failure is not None:
            raise self._subscribe_failure
        self._subscribed = True
        self._closed = False

    async def fetch(self, timeout: float) -> list[ChannelMessage]:
        deadline = time.monotonic() + timeout
        while True:
            if self._failure is not None:
                error, self._failure = self._failure, None
                raise error
            batch = self._take()
            if batch or time.monotonic() >= deadline:
                return self._decode(batch)
            await asyncio.sleep(min(_POLL_STEP, max(deadline - time.monotonic(), 0)))

    async def reset_position(self) -> None:
        if not self._replayable:
            raise RewindNotSupportedError(self._name)
        with self._lock:
            self._position = 0
        logger.debug("In-memory channel rewound", extra={"channel": self._name})

    async def close(self) -> None:
        self._closed = True
        self._subscribed = False

    def _take(self) -> list[ChannelMessage]:
        with self._lock:
            batch = self._log[self._position :]
            if self._replayable:
                self._position = len(self._log)
            else:
                self._log.clear()
                self._position = 0
        return batch

    def _decode(self, batch: list[ChannelMessage]) -> list[ChannelMessage]:
        if self._decoder is None:
            return batch
        decoded: list[ChannelMessage] = []
        for message in batch:
            if not isinstance(message.payload, bytes):
                decoded.append(message)
                continue
            try:
                payload = self._decoder.decode(message.payload)
            except PayloadDecodeError as e:
                self._decode_errors += 1
                logger.warning(
                    f"Skipping undecodable message {message.message_id}: {e}",
                    extra={"channel": self._name, "message_id": message.message_id},
                )
                continue
            decoded.append(
                ChannelMessage(
                    message_id=message.message_id,
                    payload=payload,
                    key=message.key,
                    headers=message.headers,
                    timestamp=message.timestamp,
                )
            )
        return decoded

    def __repr__(self) -> str:
        return (
            f"InMemoryChannel(name={self._name!r}, replayable={self._replayable}, "
            f"published={len(self._published)})"
        )


__all__ = ["InMemoryChannel"]
