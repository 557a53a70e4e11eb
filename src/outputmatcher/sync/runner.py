"""
Synchronous runner for the verification harness.

Runs a ``VerificationHarness`` on a private event loop in a daemon thread so
that plain (non-async) test code can use it. Lifecycle calls are marshalled
onto the loop with ``run_coroutine_threadsafe``; registration and polling go
straight to the thread-safe listener API.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Coroutine
from types import TracebackType
from typing import Any, TypeVar

from outputmatcher.channels.interface import Channel, ChannelMessage
from outputmatcher.exceptions import OutputTimeoutError
from outputmatcher.harness import VerificationHarness
from outputmatcher.listener import ListenerConfig
from outputmatcher.matchers.log import LinePattern, LogListener
from outputmatcher.output import OutputMatcher
from outputmatcher.types import Predicate
from outputmatcher.waiting import wait_until

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncVerificationHarness:
    """
    Blocking facade over a VerificationHarness.

    Example:
        >>> harness = SyncVerificationHarness()
        >>> harness.add_channel(channel)
        >>> with harness:
        ...     send_input("hello world")
        ...     harness.wait_for(equals("HELLO WORLD"), timeout=5.0)
    """

    def __init__(
        self,
        harness: VerificationHarness | None = None,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize the runner.

        Args:
            harness: Harness to drive. A default one is created if None.
            timeout: Default timeout in seconds for lifecycle operations
        """
        self._harness = harness or VerificationHarness()
        self._timeout = timeout
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def harness(self) -> VerificationHarness:
        return self._harness

    @property
    def logs(self) -> LogListener:
        return self._harness.logs

    @property
    def is_started(self) -> bool:
        return self._harness.is_started

    def add_channel(
        self,
        channel: Channel,
        config: ListenerConfig | None = None,
        *,
        name: str | None = None,
    ) -> OutputMatcher:
        return self._run_sync(self._harness.add_channel(channel, config, name=name))

    def output(self, name: str | None = None) -> OutputMatcher:
        return self._harness.output(name)

    def start(self) -> None:
        """Start the loop thread and every listener."""
        self._run_sync(self._harness.start())

    def stop(self, timeout: float | None = None) -> None:
        """Stop every listener, then the loop thread."""
        with self._lock:
            loop, thread = self._loop, self._thread
        if loop is None or thread is None:
            return
        try:
            self._run_sync(self._harness.stop(), timeout)
        finally:
            loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout if timeout is not None else self._timeout)
            if not thread.is_alive():
                loop.close()
            else:
                logger.warning("Event loop thread did not stop in time")
            with self._lock:
                self._loop = None
                self._thread = None

    def reset(self) -> None:
        self._harness.reset()

    def wait_for(
        self,
        *predicates: Predicate,
        channel: str | None = None,
        timeout: float = 10.0,
        interval: float = 0.1,
    ) -> list[ChannelMessage]:
        """
        Block until all predicates are satisfied on a channel.

        Returns:
            The matching message for each predicate, in argument order

        Raises:
            OutputTimeoutError: Naming the predicates still unsatisfied
        """
        output = self._harness.output(channel)
        check = output.check_for(*predicates)
        try:
            wait_until(check, timeout=timeout, interval=interval)
        except OutputTimeoutError:
            pending = ", ".join(check.pending_predicates())
            raise OutputTimeoutError(
                f"{pending} on channel '{output.listener.name}'", timeout
            ) from None
        return [m for m in check.matched_messages() if m is not None]

    def wait_for_log(
        self,
        pattern: LinePattern,
        times: int = 1,
        timeout: float = 10.0,
        interval: float = 0.1,
    ) -> None:
        """Block until a log pattern has been seen ``times`` times."""
        wait_until(
            self._harness.logs.check_for(pattern, times),
            timeout=timeout,
            interval=interval,
            description=f"log pattern {pattern!r} x{times}",
        )

    def __enter__(self) -> SyncVerificationHarness:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.stop()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(
                    target=self._run_loop,
                    args=(loop,),
                    name="outputmatcher-harness-loop",
                    daemon=True,
                )
                thread.start()
                self._loop = loop
                self._thread = thread
            return self._loop

    @staticmethod
    def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        loop.run_forever()

    def _run_sync(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        """
        Execute a coroutine on the loop thread and wait for its result.

        Raises:
            TimeoutError: If the operation exceeds the timeout
            Exception: Any exception raised by the coroutine
        """
        effective_timeout = timeout if timeout is not None else self._timeout
        future = asyncio.run_coroutine_threadsafe(coro, self._ensure_loop())
        try:
            return future.result(timeout=effective_timeout)
        except TimeoutError:
            future.cancel()
            raise TimeoutError(f"Sync operation timed out after {effective_timeout}s") from None


__all__ = ["SyncVerificationHarness"]
