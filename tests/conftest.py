"""
Shared pytest fixtures for the outputmatcher library tests.

This module provides:
- A controllable clock (fake_clock) for TTL and registration-time tests
- In-memory channels, replayable and fire-and-forget
- Started listeners for both replay strategies
- Listener configuration tuned for fast tests
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from outputmatcher.channels.memory import InMemoryChannel
from outputmatcher.listener import ListenerConfig, TopicListener
from tests.fixtures import FakeClock

# Short poll interval so rewinds and stops happen quickly
FAST_POLL = 0.01


# ============================================================================
# Clock
# ============================================================================


@pytest.fixture
def fake_clock() -> FakeClock:
    """Provide a fake clock starting at t=1000."""
    return FakeClock()


# ============================================================================
# Channels
# ============================================================================


@pytest.fixture
def replayable_channel() -> InMemoryChannel:
    """In-memory channel that keeps history and supports rewinding."""
    return InMemoryChannel("uppercase.out", replayable=True)


@pytest.fixture
def fire_and_forget_channel() -> InMemoryChannel:
    """In-memory channel that discards consumed messages."""
    return InMemoryChannel("uppercase.out", replayable=False)


# ============================================================================
# Listeners
# ============================================================================


@pytest.fixture
def fast_config() -> ListenerConfig:
    """Listener configuration with a short poll interval and no tracing."""
    return ListenerConfig(poll_interval=FAST_POLL, enable_tracing=False)


@pytest_asyncio.fixture
async def rewind_listener(
    replayable_channel: InMemoryChannel,
    fast_config: ListenerConfig,
    fake_clock: FakeClock,
) -> AsyncGenerator[TopicListener, None]:
    """Started listener using the REWIND strategy."""
    listener = TopicListener(replayable_channel, fast_config, clock=fake_clock)
    await listener.start()
    yield listener
    await listener.stop()


@pytest_asyncio.fixture
async def cache_listener(
    fire_and_forget_channel: InMemoryChannel,
    fast_config: ListenerConfig,
    fake_clock: FakeClock,
) -> AsyncGenerator[TopicListener, None]:
    """Started listener using the CACHE strategy."""
    listener = TopicListener(fire_and_forget_channel, fast_config, clock=fake_clock)
    await listener.start()
    yield listener
    await listener.stop()
