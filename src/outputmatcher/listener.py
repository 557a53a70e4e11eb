"""
Topic listener: continuous consumption of one output channel.

A ``TopicListener`` runs one background task that consumes its channel and
evaluates every pending matcher against every message. Matchers are
registered and polled from test code at arbitrary times, possibly from
other threads, so all listener state is guarded by a single lock.

The hard part is the race between "message arrives" and "assertion is
registered". A matcher registered after its message was consumed must still
find it. Two strategies close that gap:

- ``ReplayStrategy.REWIND`` (log-structured brokers): a new matcher stays
  inactive until the consume task has rewound the channel to its start.
  From then on the whole history is re-delivered and evaluated. Several
  registrations between two fetches share one rewind. Each matcher remembers
  the message ids it has evaluated, so replayed messages are not evaluated
  twice by the same matcher.
- ``ReplayStrategy.CACHE`` (fire-and-forget brokers): every consumed message
  is kept in a ``MessageCache`` for ``cache_ttl`` seconds. A new matcher is
  first evaluated against the cached records received before it was
  created, oldest first, then subscribed to live traffic.

Failures:
- A predicate that raises is a non-match for that message. The error is
  recorded, logged and counted; consumption continues.
- A channel failure (subscribe, fetch or rewind) is fatal. The listener
  stops consuming and every later registration, and every poll of an
  unsatisfied matcher, raises ``SubscriptionError``. There is no retry.

Example:
    >>> listener = TopicListener(KafkaChannel(KafkaChannelConfig(topic="out")))
    >>> await listener.start()
    >>> handle = listener.register_matcher(equals("HELLO WORLD"))
    >>> await async_wait_until(lambda: listener.is_satisfied(handle))
    >>> await listener.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from types import TracebackType
from typing import Any
from uuid import UUID

from outputmatcher.cache import MessageCache
from outputmatcher.channels.interface import Channel, ChannelMessage
from outputmatcher.exceptions import (
    ListenerNotRunningError,
    PredicateEvaluationError,
    SubscriptionError,
    UnknownMatcherError,
)
from outputmatcher.matchers.matcher import Matcher, MatcherHandle
from outputmatcher.observability import (
    ATTR_BATCH_SIZE,
    ATTR_CACHE_HIT,
    ATTR_CACHE_SIZE,
    ATTR_CHANNEL_NAME,
    ATTR_MATCH_COUNT,
    ATTR_MATCHER_ID,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_SYSTEM,
    ATTR_PENDING_COUNT,
    ATTR_PREDICATE_NAME,
    ATTR_REPLAY_STRATEGY,
    SpanKindEnum,
    Tracer,
    create_tracer,
    traced,
)
from outputmatcher.predicates import predicate_name
from outputmatcher.types import Clock, Predicate

logger = logging.getLogger(__name__)

PredicateErrorCallback = Callable[[PredicateEvaluationError], None]


class ReplayStrategy(Enum):
    """How a listener lets late matchers see messages consumed before them."""

    REWIND = "rewind"
    """Reset the channel position to its start on registration."""

    CACHE = "cache"
    """Keep consumed messages in a TTL-bounded cache."""


@dataclass
class ListenerConfig:
    """Configuration for a TopicListener.

    Attributes:
        strategy: Race-recovery strategy. None picks REWIND when the channel
            supports rewinding and CACHE otherwise.
        cache_ttl: Seconds consumed messages stay in the cache (CACHE only).
        cache_max_size: Maximum cached messages, or None for no cap. When
            full, the oldest record is dropped.
        poll_interval: Fetch timeout in seconds. Bounds how long a pending
            rewind and a stop request wait.
        shutdown_timeout: Seconds stop() waits for the consume task before
            cancelling it.
        max_recorded_errors: Number of recent predicate errors kept for
            inspection.
        enable_tracing: Enable OpenTelemetry spans (if installed).

    Raises:
        ValueError: If a numeric setting is out of range
    """

    strategy: ReplayStrategy | None = None
    cache_ttl: float = 300.0
    cache_max_size: int | None = 10_000
    poll_interval: float = 0.1
    shutdown_timeout: float = 10.0
    max_recorded_errors: int = 100
    enable_tracing: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.strategy, str):
            self.strategy = ReplayStrategy(self.strategy)
        if self.cache_ttl <= 0:
            raise ValueError(f"cache_ttl must be positive, got {self.cache_ttl}")
        if self.cache_max_size is not None and self.cache_max_size < 1:
            raise ValueError(f"cache_max_size must be positive or None, got {self.cache_max_size}")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval}")
        if self.shutdown_timeout < 0:
            raise ValueError(f"shutdown_timeout must not be negative, got {self.shutdown_timeout}")
        if self.max_recorded_errors < 1:
            raise ValueError(
                f"max_recorded_errors must be positive, got {self.max_recorded_errors}"
            )

    def get_sanitized_config(self) -> dict[str, Any]:
        """Get configuration for logging."""
        return {
            "strategy": self.strategy.value if self.strategy else None,
            "cache_ttl": self.cache_ttl,
            "cache_max_size": self.cache_max_size,
            "poll_interval": self.poll_interval,
            "shutdown_timeout": self.shutdown_timeout,
            "max_recorded_errors": self.max_recorded_errors,
            "enable_tracing": self.enable_tracing,
        }


@dataclass
class ListenerStats:
    """Statistics for a TopicListener.

    Attributes:
        messages_consumed: Messages delivered by the channel, replays included.
        matches: Matchers satisfied.
        predicate_errors: Predicate evaluations that raised.
        rewinds: Channel rewinds performed.
        matchers_registered: Matchers registered.
        cache_hits: Matchers satisfied from the cache at registration.
        started_at: When consumption started.
        last_message_at: When the last message was consumed.
        failed_at: When the listener failed, if it did.
    """

    # Counters
    messages_consumed: int = 0
    matches: int = 0
    predicate_errors: int = 0
    rewinds: int = 0
    matchers_registered: int = 0
    cache_hits: int = 0

    # Timing
    started_at: datetime | None = None
    last_message_at: datetime | None = None
    failed_at: datetime | None = None

    def get_stats_dict(self) -> dict[str, Any]:
        """Return statistics as a JSON-serializable dictionary.

        Returns:
            Dictionary with all statistics, datetimes converted to ISO format.
        """
        return {
            "messages_consumed": self.messages_consumed,
            "matches": self.matches,
            "predicate_errors": self.predicate_errors,
            "rewinds": self.rewinds,
            "matchers_registered": self.matchers_registered,
            "cache_hits": self.cache_hits,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_message_at": (self.last_message_at.isoformat() if self.last_message_at else None),
            "failed_at": self.failed_at.isoformat() if self.failed_at else None,
        }


class TopicListener:
    """
    Consumes one channel and evaluates registered matchers against it.

    Thread-safe: register_matcher(), is_satisfied(), matched_message() and
    release() may be called from any thread. start() and stop() must be
    awaited on the event loop that runs the consume task.
    """

    def __init__(
        self,
        channel: Channel,
        config: ListenerConfig | None = None,
        *,
        clock: Clock = time.monotonic,
        tracer: Tracer | None = None,
        on_predicate_error: PredicateErrorCallback | None = None,
    ) -> None:
        """
        Initialize the listener.

        Args:
            channel: Channel to consume. Owned by the listener from now on.
            config: Listener configuration. Uses defaults if None.
            clock: Monotonic time source for matcher creation times and
                cache ages
            tracer: Optional custom Tracer. Created from
                ``config.enable_tracing`` if not provided.
            on_predicate_error: Called with every PredicateEvaluationError,
                from the consume task (or the registering thread for cache
                hits), while the listener lock is held.

        Raises:
            ValueError: If REWIND is configured for a channel that cannot
                rewind
        """
        self._channel = channel
        self._config = config or ListenerConfig()
        self._clock = clock
        self._on_predicate_error = on_predicate_error

        strategy = self._config.strategy
        if strategy is None:
            strategy = ReplayStrategy.REWIND if channel.supports_rewind else ReplayStrategy.CACHE
        elif strategy is ReplayStrategy.REWIND and not channel.supports_rewind:
            raise ValueError(
                f"Channel '{channel.name}' does not support rewinding; "
                f"use ReplayStrategy.CACHE instead"
            )
        self._strategy = strategy

        self._cache: MessageCache | None = None
        if strategy is ReplayStrategy.CACHE:
            self._cache = MessageCache(
                ttl=self._config.cache_ttl,
                max_size=self._config.cache_max_size,
                clock=clock,
            )

        self._tracer = tracer or create_tracer(__name__, self._config.enable_tracing)
        self._enable_tracing = self._tracer.enabled

        self._lock = threading.RLock()
        self._matchers: dict[UUID, Matcher] = {}
        self._pending: dict[UUID, Matcher] = {}
        self._awaiting_rewind: list[Matcher] = []
        self._predicate_errors: deque[PredicateEvaluationError] = deque(
            maxlen=self._config.max_recorded_errors
        )
        self._stats = ListenerStats()
        self._failure: BaseException | None = None
        self._running = False
        self._stop_event = asyncio.Event()
        self._consume_task: asyncio.Task[None] | None = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def channel(self) -> Channel:
        return self._channel

    @property
    def name(self) -> str:
        return self._channel.name

    @property
    def config(self) -> ListenerConfig:
        return self._config

    @property
    def strategy(self) -> ReplayStrategy:
        return self._strategy

    @property
    def stats(self) -> ListenerStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def failure(self) -> BaseException | None:
        """The exception that stopped the listener, if any."""
        return self._failure

    @property
    def predicate_errors(self) -> list[PredicateEvaluationError]:
        """Recent predicate failures, oldest first."""
        with self._lock:
            return list(self._predicate_errors)

    @property
    def pending_count(self) -> int:
        """Unsatisfied matchers, including those waiting for a rewind."""
        with self._lock:
            return len(self._pending) + len(self._awaiting_rewind)

    @property
    def cache(self) -> MessageCache | None:
        """The message cache (CACHE strategy only)."""
        return self._cache

    def get_stats_dict(self) -> dict[str, Any]:
        return self._stats.get_stats_dict()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """
        Subscribe to the channel and start the consume task.

        Raises:
            SubscriptionError: If the channel cannot be subscribed, or the
                listener already failed
        """
        if self._running:
            logger.warning("Listener already running", extra={"channel": self.name})
            return
        if self._failure is not None:
            raise SubscriptionError(self.name, self._failure) from self._failure

        logger.info(
            "Starting topic listener",
            extra={
                "channel": self.name,
                "strategy": self._strategy.value,
                **self._config.get_sanitized_config(),
            },
        )

        with self._tracer.span(
            "outputmatcher.listener.start",
            {
                ATTR_MESSAGING_SYSTEM: self._channel.messaging_system,
                ATTR_MESSAGING_DESTINATION: self.name,
                ATTR_REPLAY_STRATEGY: self._strategy.value,
            },
        ):
            try:
                await self._channel.subscribe()
            except Exception as e:
                self._fail(e)
                logger.error(
                    f"Failed to subscribe to channel '{self.name}': {e}",
                    exc_info=True,
                    extra={"channel": self.name, "error_type": type(e).__name__},
                )
                raise SubscriptionError(self.name, e) from e

        self._stop_event.clear()
        self._running = True
        self._stats.started_at = datetime.now(UTC)
        self._consume_task = asyncio.create_task(
            self._consume_loop(),
            name=f"outputmatcher-listener-{self.name}",
        )
        logger.info("Topic listener started", extra={"channel": self.name})

    @traced(
        "outputmatcher.listener.stop",
        lambda self: {
            ATTR_MESSAGING_SYSTEM: self.channel.messaging_system,
            ATTR_MESSAGING_DESTINATION: self.name,
            ATTR_PENDING_COUNT: self.pending_count,
        },
    )
    async def stop(self, timeout: float | None = None) -> None:
        """
        Stop consuming, close the channel and discard cached messages.

        Registered matchers keep their state, so satisfied handles can still
        be inspected after stop().

        Args:
            timeout: Maximum time to wait for the consume task. Uses
                config.shutdown_timeout if None.
        """
        timeout = timeout if timeout is not None else self._config.shutdown_timeout
        logger.info("Stopping topic listener", extra={"channel": self.name, "timeout": timeout})

        self._stop_event.set()
        if self._consume_task is not None and not self._consume_task.done():
            try:
                await asyncio.wait_for(self._consume_task, timeout=timeout)
            except TimeoutError:
                logger.warning("Shutdown timed out, cancelling consume task")
                self._consume_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._consume_task
        self._consume_task = None
        self._running = False

        await self._channel.close()
        if self._cache is not None:
            self._cache.clear()

        logger.info(
            "Topic listener stopped",
            extra={"channel": self.name, **self._stats.get_stats_dict()},
        )

    async def __aenter__(self) -> TopicListener:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # =========================================================================
    # Registration and polling
    # =========================================================================

    def register_matcher(self, predicate: Predicate) -> MatcherHandle:
        """
        Register a predicate and return a handle to poll it with.

        With REWIND the matcher becomes active once the consume task has
        rewound the channel. With CACHE it is evaluated against the cached
        backlog immediately and may already be satisfied on return.

        Args:
            predicate: Side-effect-free test over message payloads

        Returns:
            Handle for is_satisfied(), matched_message() and release()

        Raises:
            SubscriptionError: If the listener failed
            ListenerNotRunningError: If the listener was not started
        """
        name = predicate_name(predicate)
        with self._tracer.span(
            "outputmatcher.listener.register",
            {
                ATTR_CHANNEL_NAME: self.name,
                ATTR_REPLAY_STRATEGY: self._strategy.value,
                ATTR_PREDICATE_NAME: name,
            },
        ) as span:
            with self._lock:
                self._ensure_usable()
                now = self._clock()
                if self._strategy is ReplayStrategy.REWIND:
                    matcher = Matcher(predicate, now, active=False)
                    self._matchers[matcher.matcher_id] = matcher
                    self._awaiting_rewind.append(matcher)
                else:
                    matcher = Matcher(predicate, now)
                    self._matchers[matcher.matcher_id] = matcher
                    if not self._match_cached(matcher):
                        self._pending[matcher.matcher_id] = matcher
                self._stats.matchers_registered += 1
                pending = len(self._pending) + len(self._awaiting_rewind)

            if span:
                span.set_attribute(ATTR_MATCHER_ID, str(matcher.matcher_id))
                span.set_attribute(ATTR_CACHE_HIT, matcher.is_satisfied)
                span.set_attribute(ATTR_PENDING_COUNT, pending)

        logger.debug(
            f"Registered matcher {name}",
            extra={
                "channel": self.name,
                "matcher_id": str(matcher.matcher_id),
                "strategy": self._strategy.value,
                "satisfied": matcher.is_satisfied,
            },
        )
        return matcher.handle(self.name)

    def is_satisfied(self, handle: MatcherHandle) -> bool:
        """
        Report whether a matcher has been satisfied. Never blocks on I/O.

        Raises:
            UnknownMatcherError: If the handle is unknown or was released
            SubscriptionError: If the matcher is unsatisfied and the listener
                failed, so it can never become satisfied
        """
        with self._lock:
            matcher = self._get(handle)
            if matcher.is_satisfied:
                return True
            if self._failure is not None:
                raise SubscriptionError(self.name, self._failure) from self._failure
            return False

    def matched_message(self, handle: MatcherHandle) -> ChannelMessage | None:
        """The message that satisfied the matcher, or None while pending."""
        with self._lock:
            return self._get(handle).matched

    def release(self, handle: MatcherHandle) -> None:
        """
        Forget a matcher.

        Raises:
            UnknownMatcherError: If the handle is unknown or already released
        """
        with self._lock:
            matcher = self._get(handle)
            del self._matchers[matcher.matcher_id]
            self._pending.pop(matcher.matcher_id, None)
            if matcher in self._awaiting_rewind:
                self._awaiting_rewind.remove(matcher)

    def clear_cache(self) -> int:
        """
        Discard the cached backlog, so later matchers only see new messages.

        Returns:
            Number of records discarded; always 0 with REWIND
        """
        with self._lock:
            if self._cache is None:
                return 0
            discarded = len(self._cache)
            self._cache.clear()
        logger.debug(
            f"Discarded {discarded} cached message(s)",
            extra={"channel": self.name, "discarded": discarded},
        )
        return discarded

    def _get(self, handle: MatcherHandle) -> Matcher:
        matcher = self._matchers.get(handle.matcher_id)
        if matcher is None:
            raise UnknownMatcherError(handle.matcher_id)
        return matcher

    def _ensure_usable(self) -> None:
        if self._failure is not None:
            raise SubscriptionError(self.name, self._failure) from self._failure
        if not self._running:
            raise ListenerNotRunningError(self.name)

    def _match_cached(self, matcher: Matcher) -> bool:
        # Caller holds the lock; only records older than the matcher qualify
        assert self._cache is not None
        for record in self._cache.query(received_before=matcher.created_at):
            if matcher.matcher_id in record.consumed_by:
                continue
            record.consumed_by.add(matcher.matcher_id)
            if self._evaluate(matcher, record.message):
                self._cache.discard(record)
                self._stats.cache_hits += 1
                return True
        return False

    # =========================================================================
    # Consumption
    # =========================================================================

    async def _consume_loop(self) -> None:
        try:
            while not self._stop_event.is_set():
                if self._awaiting_rewind:
                    await self._rewind()
                batch = await self._channel.fetch(timeout=self._config.poll_interval)
                if batch:
                    self._process_batch(batch)
        except asyncio.CancelledError:
            logger.info("Consume task cancelled", extra={"channel": self.name})
            raise
        except Exception as e:
            self._fail(e)
            logger.error(
                f"Consuming channel '{self.name}' failed, listener stopped: {e}",
                exc_info=True,
                extra={"channel": self.name, "error_type": type(e).__name__},
            )
        finally:
            self._running = False

    async def _rewind(self) -> None:
        with self._lock:
            waiting = list(self._awaiting_rewind)
            self._awaiting_rewind.clear()
        if not waiting:
            return

        with self._tracer.span(
            "outputmatcher.listener.rewind",
            {
                ATTR_MESSAGING_SYSTEM: self._channel.messaging_system,
                ATTR_MESSAGING_DESTINATION: self.name,
                ATTR_PENDING_COUNT: len(waiting),
            },
        ):
            await self._channel.reset_position()

        with self._lock:
            for matcher in waiting:
                # Released while the rewind was in flight
                if matcher.matcher_id not in self._matchers:
                    continue
                matcher.activate()
                self._pending[matcher.matcher_id] = matcher
            self._stats.rewinds += 1

        logger.debug(
            f"Rewound channel for {len(waiting)} new matcher(s)",
            extra={"channel": self.name, "activated": len(waiting)},
        )

    def _process_batch(self, batch: list[ChannelMessage]) -> None:
        with self._tracer.span_with_kind(
            "outputmatcher.listener.process",
            SpanKindEnum.CONSUMER,
            {
                ATTR_MESSAGING_SYSTEM: self._channel.messaging_system,
                ATTR_MESSAGING_DESTINATION: self.name,
                ATTR_MESSAGING_OPERATION: "receive",
                ATTR_BATCH_SIZE: len(batch),
            },
        ) as span:
            with self._lock:
                matches = 0
                for message in batch:
                    matches += self._process_message(message)
                pending = len(self._pending)
                cache_size = len(self._cache) if self._cache is not None else 0

            if span:
                span.set_attribute(ATTR_MATCH_COUNT, matches)
                span.set_attribute(ATTR_PENDING_COUNT, pending)
                span.set_attribute(ATTR_CACHE_SIZE, cache_size)

    def _process_message(self, message: ChannelMessage) -> int:
        # Caller holds the lock
        self._stats.messages_consumed += 1
        self._stats.last_message_at = datetime.now(UTC)

        evaluated: list[UUID] = []
        satisfied: list[UUID] = []
        for matcher in self._pending.values():
            if not matcher.should_evaluate(message):
                continue
            evaluated.append(matcher.matcher_id)
            if self._evaluate(matcher, message):
                satisfied.append(matcher.matcher_id)
        for matcher_id in satisfied:
            del self._pending[matcher_id]

        # Only unmatched messages are kept for late matchers
        if self._cache is not None and not satisfied:
            self._cache.insert(message, consumed_by=evaluated)

        logger.debug(
            f"Processed message {message.message_id}",
            extra={
                "channel": self.name,
                "message_id": message.message_id,
                "evaluated": len(evaluated),
                "matched": len(satisfied),
            },
        )
        return len(satisfied)

    def _evaluate(self, matcher: Matcher, message: ChannelMessage) -> bool:
        try:
            matched = matcher.evaluate(message)
        except Exception as e:
            self._record_predicate_error(matcher, message, e)
            return False
        if matched:
            self._stats.matches += 1
            logger.debug(
                f"Matcher {matcher.name} satisfied by message {message.message_id}",
                extra={
                    "channel": self.name,
                    "matcher_id": str(matcher.matcher_id),
                    "message_id": message.message_id,
                },
            )
        return matched

    def _record_predicate_error(
        self,
        matcher: Matcher,
        message: ChannelMessage,
        cause: Exception,
    ) -> None:
        error = PredicateEvaluationError(
            matcher_id=matcher.matcher_id,
            predicate_name=matcher.name,
            message_id=message.message_id,
            cause=cause,
        )
        self._predicate_errors.append(error)
        self._stats.predicate_errors += 1
        logger.warning(
            str(error),
            extra={
                "channel": self.name,
                "matcher_id": str(matcher.matcher_id),
                "message_id": message.message_id,
                "error_type": type(cause).__name__,
            },
        )
        if self._on_predicate_error is not None:
            try:
                self._on_predicate_error(error)
            except Exception:
                logger.exception(
                    "Predicate error callback raised",
                    extra={"channel": self.name, "matcher_id": str(matcher.matcher_id)},
                )

    def _fail(self, error: BaseException) -> None:
        with self._lock:
            self._failure = error
            self._stats.failed_at = datetime.now(UTC)

    def __repr__(self) -> str:
        return (
            f"TopicListener(channel={self.name!r}, strategy={self._strategy.value}, "
            f"running={self._running}, pending={self.pending_count})"
        )


__all__ = [
    "ListenerConfig",
    "ListenerStats",
    "PredicateErrorCallback",
    "ReplayStrategy",
    "TopicListener",
]
