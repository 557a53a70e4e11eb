"""
"Wait until true" utilities.

Poll a zero-argument check until it returns True or a timeout elapses. The
check functions returned by ``OutputMatcher.check_for`` and
``LogListener.check_for`` are built for these loops: the first call
registers, later calls only poll.

Example:
    >>> check = output.check_for(equals("HELLO WORLD"))
    >>> await async_wait_until(check, timeout=5.0, description="uppercased greeting")
"""

from __future__ import annotations

import asyncio
import logging
import time

from outputmatcher.exceptions import OutputTimeoutError
from outputmatcher.types import CheckFn

logger = logging.getLogger(__name__)


def _validate(timeout: float, interval: float) -> None:
    if timeout < 0:
        raise ValueError(f"timeout must not be negative, got {timeout}")
    if interval <= 0:
        raise ValueError(f"interval must be positive, got {interval}")


def _describe(check: CheckFn, description: str | None) -> str:
    if description:
        return description
    return getattr(check, "__qualname__", None) or repr(check)


def wait_until(
    check: CheckFn,
    timeout: float = 10.0,
    interval: float = 0.1,
    description: str | None = None,
) -> None:
    """
    Block until ``check()`` returns True.

    The check is always called at least once, and once more after the
    deadline, so a zero timeout still gives it one chance.

    Args:
        check: Zero-argument poll function
        timeout: Maximum seconds to wait
        interval: Seconds to sleep between polls
        description: What is being waited for, used in the timeout error

    Raises:
        OutputTimeoutError: If the check did not pass in time
        Exception: Anything the check raises, unchanged
    """
    _validate(timeout, interval)
    deadline = time.monotonic() + timeout
    polls = 0
    while True:
        polls += 1
        if check():
            return
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        time.sleep(min(interval, remaining))

    what = _describe(check, description)
    logger.debug(f"Gave up waiting for {what}", extra={"timeout": timeout, "polls": polls})
    raise OutputTimeoutError(what, timeout)


async def async_wait_until(
    check: CheckFn,
    timeout: float = 10.0,
    interval: float = 0.1,
    description: str | None = None,
) -> None:
    """
    Async variant of wait_until(). Sleeps with ``asyncio.sleep`` so the
    listener's consume task keeps running on the same loop.

    Raises:
        OutputTimeoutError: If the check did not pass in time
    """
    _validate(timeout, interval)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    polls = 0
    while True:
        polls += 1
        if check():
            return
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        await asyncio.sleep(min(interval, remaining))

    what = _describe(check, description)
    logger.debug(f"Gave up waiting for {what}", extra={"timeout": timeout, "polls": polls})
    raise OutputTimeoutError(what, timeout)


__all__ = [
    "async_wait_until",
    "wait_until",
]
