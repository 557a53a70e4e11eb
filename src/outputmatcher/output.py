"""
Output matcher facade.

Fuses matcher registration and polling into one reusable check function,
which is the shape "wait until true" loops expect:

    >>> output = OutputMatcher(listener)
    >>> await async_wait_until(output.check_for(equals("HELLO WORLD")))

The check registers its matchers on its first call only. Registering a new
matcher on every poll would defeat the listener's race recovery (every
registration triggers a rewind, or a fresh cache scan) and grow the
listener's matcher map without bound.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

from outputmatcher.channels.interface import ChannelMessage
from outputmatcher.exceptions import OutputTimeoutError, UnknownMatcherError
from outputmatcher.listener import TopicListener
from outputmatcher.matchers.matcher import MatcherHandle
from outputmatcher.predicates import predicate_name
from outputmatcher.types import Predicate
from outputmatcher.waiting import async_wait_until

logger = logging.getLogger(__name__)

_CheckKey = tuple[int, ...]


class OutputCheck:
    """
    Zero-argument check returned by ``OutputMatcher.check_for``.

    Calling it returns True once every predicate has been satisfied by some
    message on the listener's channel.
    """

    def __init__(self, output: OutputMatcher, predicates: tuple[Predicate, ...]) -> None:
        self._output = output
        self._predicates = predicates
        self._handles: list[MatcherHandle] | None = None
        # Captured when the check passes, so it survives the handles' release
        self._matched: list[ChannelMessage | None] | None = None

    @property
    def predicates(self) -> tuple[Predicate, ...]:
        return self._predicates

    @property
    def handles(self) -> list[MatcherHandle]:
        """Handles of the registered matchers; empty before the first call."""
        return list(self._handles or [])

    @property
    def is_registered(self) -> bool:
        return self._handles is not None

    def pending_predicates(self) -> list[str]:
        """Names of the predicates not yet satisfied."""
        listener = self._output.listener
        if self._matched is not None:
            return []
        if self._handles is None:
            return [predicate_name(p) for p in self._predicates]
        return [
            predicate_name(predicate)
            for predicate, handle in zip(self._predicates, self._handles, strict=True)
            if not listener.is_satisfied(handle)
        ]

    def matched_messages(self) -> list[ChannelMessage | None]:
        if self._matched is not None:
            return list(self._matched)
        if self._handles is None:
            return [None] * len(self._predicates)
        return [self._output.listener.matched_message(h) for h in self._handles]

    def __call__(self) -> bool:
        return self._output._poll(self)

    def __repr__(self) -> str:
        names = ", ".join(predicate_name(p) for p in self._predicates)
        return f"OutputCheck({names})"


class OutputMatcher:
    """
    Caller-facing entry point for assertions on one listener's output.

    Thread-safe: checks may be created and polled from any thread.

    Example:
        >>> output = OutputMatcher(listener)
        >>> check = output.check_for(contains("ORDER-42"), has_fields(status="shipped"))
        >>> wait_until(check)
        >>> output.matched_messages(contains("ORDER-42"), has_fields(status="shipped"))
    """

    def __init__(self, listener: TopicListener) -> None:
        self._listener = listener
        self._lock = threading.RLock()
        # Checks that have not passed yet, by predicate identity
        self._checks: dict[_CheckKey, OutputCheck] = {}
        # Most recent check per predicate set, kept after it passed
        self._last_checks: dict[_CheckKey, OutputCheck] = {}
        self._handles: list[MatcherHandle] = []

    @property
    def listener(self) -> TopicListener:
        return self._listener

    @property
    def handles(self) -> list[MatcherHandle]:
        """Every handle registered through this facade and not yet reset."""
        with self._lock:
            return list(self._handles)

    def check_for(self, *predicates: Predicate) -> OutputCheck:
        """
        Return a check for the given predicates.

        Calling check_for again with the same predicate objects before the
        check has returned True gives back the same check. Once it has
        returned True the next call starts a fresh assertion and releases
        the passed check's matchers; its matched messages stay readable.

        What the fresh assertion can match depends on the listener's
        strategy. With CACHE, messages that satisfied a matcher are never
        cached, so only output not yet claimed counts. With REWIND, the
        new matchers replay the channel from the start and the message
        that satisfied the previous check satisfies this one too; assert
        on something that identifies the new output (an id, a counter)
        when that matters.

        Args:
            *predicates: One or more predicates; each gets its own matcher

        Returns:
            Callable check, True once all predicates are satisfied

        Raises:
            ValueError: If no predicate is given
        """
        if not predicates:
            raise ValueError("check_for() requires at least one predicate")
        key = _key(predicates)
        with self._lock:
            check = self._checks.get(key)
            if check is None:
                passed = self._last_checks.get(key)
                if passed is not None:
                    self._release(passed.handles)
                check = OutputCheck(self, predicates)
                self._checks[key] = check
                self._last_checks[key] = check
            return check

    def matches(self, *predicates: Predicate) -> bool:
        """Shorthand for ``check_for(*predicates)()``."""
        return self.check_for(*predicates)()

    async def wait_for(
        self,
        *predicates: Predicate,
        timeout: float = 10.0,
        interval: float = 0.1,
    ) -> list[ChannelMessage]:
        """
        Wait until all predicates are satisfied.

        Returns:
            The matching message for each predicate, in argument order

        Raises:
            OutputTimeoutError: Naming the predicates still unsatisfied
            SubscriptionError: If the listener failed while waiting
        """
        check = self.check_for(*predicates)
        try:
            await async_wait_until(check, timeout=timeout, interval=interval)
        except OutputTimeoutError:
            pending = ", ".join(check.pending_predicates())
            raise OutputTimeoutError(
                f"{pending} on channel '{self._listener.name}'", timeout
            ) from None
        return [m for m in check.matched_messages() if m is not None]

    def matched_messages(self, *predicates: Predicate) -> list[ChannelMessage | None]:
        """
        Messages that satisfied the most recent check for these predicates.

        Entries are None for predicates not satisfied yet, or when no check
        was created for these predicates.
        """
        with self._lock:
            check = self._last_checks.get(_key(predicates))
        if check is None:
            return [None] * len(predicates)
        return check.matched_messages()

    def reset(self) -> None:
        """Release every matcher registered through this facade."""
        with self._lock:
            handles = list(self._handles)
            self._checks.clear()
            self._last_checks.clear()
            self._release(handles)
        logger.debug(
            f"Released {len(handles)} matcher(s)",
            extra={"channel": self._listener.name},
        )

    def _poll(self, check: OutputCheck) -> bool:
        with self._lock:
            if check._matched is not None:
                return True
            if check._handles is None:
                check._handles = self._register(check.predicates)
                self._handles.extend(check._handles)
            handles = check._handles

        if not all(self._listener.is_satisfied(h) for h in handles):
            return False

        with self._lock:
            if check._matched is None:
                check._matched = [self._listener.matched_message(h) for h in handles]
            key = _key(check.predicates)
            if self._checks.get(key) is check:
                del self._checks[key]
        return True

    def _release(self, handles: Sequence[MatcherHandle]) -> None:
        # Caller holds the lock
        for handle in handles:
            if handle in self._handles:
                self._handles.remove(handle)
            try:
                self._listener.release(handle)
            except UnknownMatcherError:
                logger.debug(f"Matcher {handle} already released")

    def _register(self, predicates: Sequence[Predicate]) -> list[MatcherHandle]:
        handles: list[MatcherHandle] = []
        try:
            for predicate in predicates:
                handles.append(self._listener.register_matcher(predicate))
        except Exception:
            for handle in handles:
                self._listener.release(handle)
            raise
        return handles

    def __repr__(self) -> str:
        return f"OutputMatcher(channel={self._listener.name!r}, checks={len(self._checks)})"


def _key(predicates: Sequence[Predicate]) -> _CheckKey:
    # Identity, not equality: two equal-looking lambdas are different assertions
    return tuple(id(p) for p in predicates)


__all__ = [
    "OutputCheck",
    "OutputMatcher",
]
