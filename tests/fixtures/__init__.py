"""
Shared test helpers for the outputmatcher library.

Usage:
    from tests.fixtures import (
        FakeClock,
        OrderShipped,
        RecordingTracer,
        wait_for_consumed,
    )
"""

from tests.fixtures.clock import FakeClock
from tests.fixtures.payloads import OrderShipped, wait_for_consumed
from tests.fixtures.tracing import RecordedSpan, RecordingTracer

__all__ = [
    "FakeClock",
    "OrderShipped",
    "RecordedSpan",
    "RecordingTracer",
    "wait_for_consumed",
]
