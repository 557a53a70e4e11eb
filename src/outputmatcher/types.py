"""Common type definitions for the outputmatcher library."""

from collections.abc import Callable
from typing import Any
from uuid import UUID

# A side-effect-free test over a decoded payload or a log line
Predicate = Callable[[Any], bool]

# Zero-argument poll function handed to "wait until true" utilities
CheckFn = Callable[[], bool]

# Monotonic time source in seconds
Clock = Callable[[], float]

MatcherId = UUID
