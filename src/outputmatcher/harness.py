"""
Verification harness.

Owns the listeners for every output channel of the application under test
plus one log listener, with explicit start and stop. Create one per test
session (for example in a session-scoped fixture) and share it across test
cases, calling ``reset()`` between them.

Example:
    >>> harness = VerificationHarness()
    >>> await harness.add_channel(KafkaChannel(KafkaChannelConfig(topic="uppercase.out")))
    >>> async with harness:
    ...     producer.send("input", "hello world")
    ...     await harness.output("uppercase.out").wait_for(equals("HELLO WORLD"))
    ...     harness.logs.consume(container.logs())
    ...     wait_until(harness.logs.check_for("Started Application"))
"""

from __future__ import annotations

import logging
import time
from types import TracebackType
from typing import Any

from outputmatcher.channels.interface import Channel
from outputmatcher.listener import ListenerConfig, PredicateErrorCallback, TopicListener
from outputmatcher.matchers.log import LogListener
from outputmatcher.observability import Tracer
from outputmatcher.output import OutputMatcher
from outputmatcher.types import Clock

logger = logging.getLogger(__name__)


class VerificationHarness:
    """Named topic listeners with their output facades, and a log listener."""

    def __init__(
        self,
        config: ListenerConfig | None = None,
        *,
        log_max_lines: int | None = 10_000,
        clock: Clock = time.monotonic,
        tracer: Tracer | None = None,
        on_predicate_error: PredicateErrorCallback | None = None,
    ) -> None:
        """
        Initialize the harness.

        Args:
            config: Default listener configuration for added channels
            log_max_lines: Lines kept by the log listener
            clock: Time source shared by all listeners
            tracer: Optional tracer shared by all listeners
            on_predicate_error: Predicate error callback for all listeners
        """
        self._config = config
        self._clock = clock
        self._tracer = tracer
        self._on_predicate_error = on_predicate_error
        self._listeners: dict[str, TopicListener] = {}
        self._outputs: dict[str, OutputMatcher] = {}
        self._logs = LogListener(max_lines=log_max_lines)
        self._started = False

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def logs(self) -> LogListener:
        return self._logs

    @property
    def channel_names(self) -> list[str]:
        return list(self._listeners)

    async def add_channel(
        self,
        channel: Channel,
        config: ListenerConfig | None = None,
        *,
        name: str | None = None,
    ) -> OutputMatcher:
        """
        Attach a channel. Its listener starts now if the harness is started.

        Args:
            channel: Output channel of the application under test
            config: Listener configuration, overriding the harness default
            name: Lookup name, defaults to the channel name

        Returns:
            The output facade for the channel

        Raises:
            ValueError: If the name is already used
            SubscriptionError: If the harness is started and subscribing fails
        """
        key = name or channel.name
        if key in self._listeners:
            raise ValueError(f"Channel '{key}' is already attached")

        listener = TopicListener(
            channel,
            config or self._config,
            clock=self._clock,
            tracer=self._tracer,
            on_predicate_error=self._on_predicate_error,
        )
        self._listeners[key] = listener
        self._outputs[key] = OutputMatcher(listener)
        logger.debug(
            f"Attached channel '{key}'",
            extra={"channel": key, "strategy": listener.strategy.value},
        )

        if self._started:
            await listener.start()
        return self._outputs[key]

    def listener(self, name: str | None = None) -> TopicListener:
        return self._listeners[self._resolve(name)]

    def output(self, name: str | None = None) -> OutputMatcher:
        """
        Output facade for a channel.

        Args:
            name: Channel name; may be omitted when exactly one is attached

        Raises:
            KeyError: If no such channel is attached
            ValueError: If name is omitted and several channels are attached
        """
        return self._outputs[self._resolve(name)]

    async def start(self) -> None:
        """
        Start every listener.

        Raises:
            SubscriptionError: If any channel cannot be subscribed. Listeners
                already started are stopped again.
        """
        if self._started:
            return
        started: list[TopicListener] = []
        try:
            for listener in self._listeners.values():
                await listener.start()
                started.append(listener)
        except Exception:
            for listener in started:
                await listener.stop()
            raise
        self._started = True
        logger.info("Verification harness started", extra={"channels": self.channel_names})

    async def stop(self, timeout: float | None = None) -> None:
        """Stop every listener and drop log state."""
        for listener in self._listeners.values():
            await listener.stop(timeout)
        self._logs.clear()
        self._started = False
        logger.info("Verification harness stopped", extra={"channels": self.channel_names})

    def reset(self) -> None:
        """
        Release all matchers and log checks, keeping listeners running.

        Cached backlogs are discarded too, so output consumed before the
        reset cannot satisfy assertions made after it.
        """
        for output in self._outputs.values():
            output.reset()
        for listener in self._listeners.values():
            listener.clear_cache()
        self._logs.clear()

    def get_stats_dict(self) -> dict[str, Any]:
        return {name: listener.get_stats_dict() for name, listener in self._listeners.items()}

    async def __aenter__(self) -> VerificationHarness:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    def _resolve(self, name: str | None) -> str:
        if name is not None:
            if name not in self._listeners:
                raise KeyError(f"No channel named '{name}' is attached")
            return name
        if len(self._listeners) != 1:
            raise ValueError(
                f"Channel name required, {len(self._listeners)} channels are attached"
            )
        return next(iter(self._listeners))


__all__ = ["VerificationHarness"]
