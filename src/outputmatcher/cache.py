"""
Bounded, time-limited backlog of consumed messages.

Fire-and-forget brokers cannot re-deliver a message once it has been
consumed. A listener on such a channel keeps every consumed message here for
``ttl`` seconds so that a matcher registered shortly after its message
arrived can still find it.

Records older than the TTL are evicted whether or not anything matched them.
A matcher registered too late for its message will not see it; the message
has to be produced again.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from uuid import UUID

from outputmatcher.channels.interface import ChannelMessage
from outputmatcher.exceptions import CacheOverflowError
from outputmatcher.types import Clock

logger = logging.getLogger(__name__)


@dataclass
class MessageRecord:
    """
    A consumed message held in the cache.

    Attributes:
        message: The consumed message
        received_at: Clock reading when the message was inserted
        consumed_by: IDs of matchers that have already evaluated the message
        sequence: Insertion counter, increasing within one cache
    """

    message: ChannelMessage
    received_at: float
    consumed_by: set[UUID] = field(default_factory=set)
    sequence: int = 0

    def age(self, now: float) -> float:
        return now - self.received_at


class MessageCache:
    """
    Insertion-ordered message cache with TTL eviction and an optional size cap.

    Thread-safe: all operations take an internal lock. The listener also
    calls into the cache while holding its own lock, which is always
    acquired first.

    Example:
        >>> cache = MessageCache(ttl=60.0, max_size=1000)
        >>> cache.insert(message)
        >>> for record in cache.query(received_before=matcher.created_at):
        ...     ...
    """

    def __init__(
        self,
        ttl: float,
        max_size: int | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        """
        Initialize the cache.

        Args:
            ttl: Seconds a record is kept after insertion. Must be positive.
            max_size: Maximum records held, or None for no cap. When full the
                oldest record is dropped on insert.
            clock: Monotonic time source in seconds

        Raises:
            ValueError: If ttl or max_size is not positive
        """
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        if max_size is not None and max_size < 1:
            raise ValueError(f"max_size must be positive or None, got {max_size}")

        self._ttl = ttl
        self._max_size = max_size
        self._clock = clock
        self._records: OrderedDict[int, MessageRecord] = OrderedDict()
        self._lock = threading.RLock()
        self._sequence = 0
        self._evicted_count = 0
        self._overflow_count = 0
        self._last_overflow: CacheOverflowError | None = None

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def max_size(self) -> int | None:
        return self._max_size

    @property
    def evicted_count(self) -> int:
        """Records removed because their TTL expired."""
        return self._evicted_count

    @property
    def overflow_count(self) -> int:
        """Records dropped early because the cache was full."""
        return self._overflow_count

    @property
    def last_overflow(self) -> CacheOverflowError | None:
        """Diagnostic for the most recent overflow, if any."""
        return self._last_overflow

    def insert(
        self,
        message: ChannelMessage,
        consumed_by: Iterable[UUID] = (),
    ) -> MessageRecord:
        """
        Add a consumed message to the cache.

        Expired records are evicted first. If the cache is still full the
        oldest record is dropped and a warning is logged; insert never raises.

        Args:
            message: The consumed message
            consumed_by: Matchers that already evaluated the message

        Returns:
            The new record
        """
        with self._lock:
            self.evict()
            if self._max_size is not None:
                while len(self._records) >= self._max_size:
                    self._drop_oldest()

            self._sequence += 1
            record = MessageRecord(
                message=message,
                received_at=self._clock(),
                consumed_by=set(consumed_by),
                sequence=self._sequence,
            )
            self._records[record.sequence] = record
            return record

    def query(self, received_before: float | None = None) -> list[MessageRecord]:
        """
        Return live records, oldest first.

        Args:
            received_before: If given, only records with
                ``received_at <= received_before`` are returned

        Returns:
            Records in insertion order
        """
        with self._lock:
            self.evict()
            if received_before is None:
                return list(self._records.values())
            return [r for r in self._records.values() if r.received_at <= received_before]

    def evict(self) -> int:
        """
        Remove records older than the TTL.

        Returns:
            Number of records removed
        """
        with self._lock:
            now = self._clock()
            removed = 0
            # Insertion order is receive order, so expired records form a prefix
            while self._records:
                sequence, record = next(iter(self._records.items()))
                if record.age(now) <= self._ttl:
                    break
                del self._records[sequence]
                removed += 1
            if removed:
                self._evicted_count += removed
                logger.debug(
                    f"Evicted {removed} expired message(s) from cache",
                    extra={"evicted": removed, "remaining": len(self._records)},
                )
            return removed

    def discard(self, record: MessageRecord) -> bool:
        """
        Remove a record once a matcher has claimed it.

        Returns:
            True if the record was still cached
        """
        with self._lock:
            return self._records.pop(record.sequence, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def _drop_oldest(self) -> None:
        _, dropped = self._records.popitem(last=False)
        self._overflow_count += 1
        self._last_overflow = CacheOverflowError(
            self._max_size or 0, dropped.message.message_id
        )
        logger.warning(
            str(self._last_overflow),
            extra={
                "max_size": self._max_size,
                "dropped_message_id": dropped.message.message_id,
                "overflow_count": self._overflow_count,
            },
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __iter__(self) -> Iterator[MessageRecord]:
        with self._lock:
            return iter(list(self._records.values()))

    def __repr__(self) -> str:
        return f"MessageCache(ttl={self._ttl}, max_size={self._max_size}, size={len(self)})"


__all__ = [
    "MessageCache",
    "MessageRecord",
]
