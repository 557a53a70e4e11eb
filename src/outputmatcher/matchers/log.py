"""
Log line matching.

The log-side counterpart of the topic listener, for assertions over the
application's process output. Lines are fed in as they are produced;
there is no backlog and no rewind, so a matcher only sees lines fed after
it was registered.

Example:
    >>> logs = LogListener()
    >>> started = logs.check_for("Started Application")
    >>> retried = logs.check_for(re.compile(r"retry \\d+"), times=3)
    >>>
    >>> logs.consume(container_log_lines)
    >>> wait_until(started)
"""

from __future__ import annotations

import logging
import re
import threading
from collections import deque
from collections.abc import Callable, Iterable
from typing import Any

from outputmatcher.types import CheckFn

logger = logging.getLogger(__name__)

LinePattern = str | re.Pattern[str] | Callable[[str], bool]


def _line_predicate(pattern: LinePattern) -> Callable[[str], bool]:
    if isinstance(pattern, str):
        return lambda line: pattern in line
    if isinstance(pattern, re.Pattern):
        return lambda line: pattern.search(line) is not None
    if callable(pattern):
        return lambda line: bool(pattern(line))
    raise TypeError(
        f"Log pattern must be a str, compiled regex or callable, got {type(pattern).__name__}"
    )


def _check_key(pattern: LinePattern) -> Any:
    # Callables by identity: they need not be hashable
    if isinstance(pattern, (str, re.Pattern)):
        return pattern
    return id(pattern)


def _describe(pattern: LinePattern) -> str:
    if isinstance(pattern, str):
        return repr(pattern)
    if isinstance(pattern, re.Pattern):
        return f"re({pattern.pattern!r})"
    return getattr(pattern, "__qualname__", None) or repr(pattern)


class LogMatcher:
    """
    Matches log lines against a pattern with a minimum occurrence count.

    Each matching line counts once. The matcher is satisfied when the count
    reaches the required number of occurrences; lines seen after that are
    ignored.

    Thread-safe: lines may be fed from a reader thread while a test polls
    ``is_satisfied``.

    Example:
        >>> matcher = LogMatcher("connection refused").times(3)
        >>> for line in lines:
        ...     matcher.matches(line)
        >>> matcher.is_satisfied
    """

    def __init__(self, pattern: LinePattern) -> None:
        """
        Initialize the matcher.

        Args:
            pattern: Substring to look for, compiled regex (``search``
                semantics), or callable ``line -> bool``

        Raises:
            TypeError: If the pattern is none of the above
        """
        self._predicate = _line_predicate(pattern)
        self._pattern = pattern
        self._required = 1
        self._matched_lines: list[str] = []
        self._lock = threading.Lock()

    @property
    def pattern(self) -> LinePattern:
        return self._pattern

    @property
    def required(self) -> int:
        """Number of matching lines needed for satisfaction."""
        return self._required

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._matched_lines)

    @property
    def matched_lines(self) -> list[str]:
        with self._lock:
            return list(self._matched_lines)

    @property
    def is_satisfied(self) -> bool:
        with self._lock:
            return len(self._matched_lines) >= self._required

    def times(self, n: int) -> LogMatcher:
        """
        Require at least ``n`` matching lines.

        Args:
            n: Minimum occurrences, at least 1

        Returns:
            self, for chaining

        Raises:
            ValueError: If n is less than 1
        """
        if n < 1:
            raise ValueError(f"times() requires n >= 1, got {n}")
        with self._lock:
            self._required = n
        return self

    def matches(self, line: str) -> bool:
        """
        Evaluate a line and count it if it matches.

        Args:
            line: Log line without trailing newline

        Returns:
            True if the line matched and was counted
        """
        with self._lock:
            if len(self._matched_lines) >= self._required:
                return False
            if not self._predicate(line):
                return False
            self._matched_lines.append(line)
            return True

    def __repr__(self) -> str:
        return (
            f"LogMatcher({_describe(self._pattern)}, times={self._required}, "
            f"count={self.count})"
        )


class LogListener:
    """
    Fans log lines out to registered LogMatchers.

    Example:
        >>> logs = LogListener(max_lines=5000)
        >>> matcher = logs.register(LogMatcher("ready").times(2))
        >>> logs.feed("service ready\\n")
        >>> logs.feed(b"service ready")
        >>> matcher.is_satisfied
        True
    """

    def __init__(self, max_lines: int | None = 10_000) -> None:
        """
        Initialize the listener.

        Args:
            max_lines: Number of recent lines kept in ``lines``, or None to
                keep all of them
        """
        if max_lines is not None and max_lines < 1:
            raise ValueError(f"max_lines must be positive or None, got {max_lines}")
        self._matchers: list[LogMatcher] = []
        self._lines: deque[str] = deque(maxlen=max_lines)
        self._checks: dict[tuple[Any, int], tuple[LogMatcher, CheckFn]] = {}
        self._lock = threading.RLock()
        self._line_count = 0

    @property
    def lines(self) -> list[str]:
        """Recently fed lines, oldest first."""
        with self._lock:
            return list(self._lines)

    @property
    def line_count(self) -> int:
        """Total lines fed, including those no longer kept in ``lines``."""
        return self._line_count

    @property
    def matchers(self) -> list[LogMatcher]:
        with self._lock:
            return list(self._matchers)

    def register(self, matcher: LogMatcher) -> LogMatcher:
        """Add a matcher; it sees lines fed from now on."""
        with self._lock:
            self._matchers.append(matcher)
        logger.debug(f"Registered log matcher {matcher!r}")
        return matcher

    def release(self, matcher: LogMatcher) -> None:
        with self._lock:
            if matcher in self._matchers:
                self._matchers.remove(matcher)

    def feed(self, line: str | bytes) -> None:
        """
        Evaluate one line against every unsatisfied matcher.

        Args:
            line: A log line. Bytes are decoded as UTF-8 with replacement,
                one trailing newline is stripped.
        """
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        line = line.rstrip("\r\n")
        with self._lock:
            self._lines.append(line)
            self._line_count += 1
            for matcher in self._matchers:
                if matcher.matches(line) and matcher.is_satisfied:
                    logger.debug(f"Log matcher satisfied: {matcher!r}")
            # Satisfied matchers ignore further lines
            self._matchers = [m for m in self._matchers if not m.is_satisfied]

    def consume(self, lines: Iterable[str | bytes]) -> int:
        """
        Feed every line from a line source until it is exhausted.

        Returns:
            Number of lines fed
        """
        fed = 0
        for line in lines:
            self.feed(line)
            fed += 1
        return fed

    def check_for(self, pattern: LinePattern, times: int = 1) -> CheckFn:
        """
        Return a poll function for a log assertion.

        The matcher is registered on the first call of the returned function,
        and calling check_for again with the same pattern and count before
        the check passed returns the same function.

        Args:
            pattern: Substring, compiled regex or callable
            times: Minimum occurrences

        Returns:
            Zero-argument callable, True once the pattern was seen ``times``
            times after registration
        """
        key = (_check_key(pattern), times)
        with self._lock:
            cached = self._checks.get(key)
            if cached is not None:
                return cached[1]

            matcher = LogMatcher(pattern).times(times)
            registered = False

            def check() -> bool:
                nonlocal registered
                with self._lock:
                    if not registered:
                        self.register(matcher)
                        registered = True
                    if not matcher.is_satisfied:
                        return False
                    if self._checks.get(key, (None,))[0] is matcher:
                        del self._checks[key]
                    return True

            self._checks[key] = (matcher, check)
            return check

    def clear(self) -> None:
        """Drop all matchers, pending checks and kept lines."""
        with self._lock:
            self._matchers.clear()
            self._checks.clear()
            self._lines.clear()


__all__ = [
    "LinePattern",
    "LogListener",
    "LogMatcher",
]
