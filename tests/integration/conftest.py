"""
Shared pytest fixtures for integration tests.

This module provides broker detection, skip conditions and the Redis
container fixture. Kafka and RabbitMQ containers are defined next to the
tests that use them.

If testcontainers or Docker is not available, tests are automatically skipped.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio

from outputmatcher.listener import ListenerConfig

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for integration tests."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require docker)"
    )
    config.addinivalue_line("markers", "redis: marks tests that require Redis")
    config.addinivalue_line("markers", "rabbitmq: marks tests that require RabbitMQ")
    config.addinivalue_line("markers", "kafka: marks tests that require Kafka")


# ============================================================================
# Testcontainers Detection
# ============================================================================

TESTCONTAINERS_AVAILABLE = False

try:
    from testcontainers.redis import RedisContainer

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    RedisContainer = None  # type: ignore[assignment, misc]


def is_docker_available() -> bool:
    """Check if Docker is available for running containers."""
    import subprocess

    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, FileNotFoundError, Exception):
        return False


DOCKER_AVAILABLE = is_docker_available()


# ============================================================================
# Skip Conditions
# ============================================================================

skip_if_no_testcontainers = pytest.mark.skipif(
    not TESTCONTAINERS_AVAILABLE, reason="testcontainers not installed (pip install testcontainers)"
)

skip_if_no_docker = pytest.mark.skipif(
    not DOCKER_AVAILABLE, reason="Docker not available or not running"
)

skip_if_no_redis_infra = pytest.mark.skipif(
    not (TESTCONTAINERS_AVAILABLE and DOCKER_AVAILABLE),
    reason="Redis test infrastructure not available",
)


# ============================================================================
# Shared Helpers
# ============================================================================


@pytest.fixture
def channel_name() -> str:
    """Unique topic, stream or exchange name so tests never share history."""
    return f"uppercase.out.{uuid4().hex[:8]}"


@pytest.fixture
def broker_listener_config() -> ListenerConfig:
    """Listener configuration for real brokers: short polls, no tracing."""
    return ListenerConfig(poll_interval=0.1, shutdown_timeout=5.0, enable_tracing=False)


# ============================================================================
# Redis Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def redis_container() -> Generator[Any, None, None]:
    """
    Provide Redis container for integration tests.

    Uses testcontainers to automatically start and stop a Redis container.
    Container is shared across all tests in the session for efficiency.
    """
    if not TESTCONTAINERS_AVAILABLE or not DOCKER_AVAILABLE:
        pytest.skip("Redis testcontainer not available")

    container = RedisContainer("redis:7")
    container.start()

    yield container

    container.stop()


@pytest.fixture(scope="session")
def redis_connection_url(redis_container: Any) -> str:
    """Get Redis connection URL from container."""
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    return f"redis://{host}:{port}"


@pytest_asyncio.fixture
async def redis_client(redis_connection_url: str) -> AsyncGenerator[Any, None]:
    """
    Provide async Redis client connected to container.

    Flushes database before and after each test for isolation.
    """
    try:
        import redis.asyncio as redis
    except ImportError:
        pytest.skip("redis package not installed")

    # Use single_connection_client=True to avoid connection pool event loop issues
    client = redis.from_url(
        redis_connection_url,
        decode_responses=True,
        single_connection_client=True,
    )

    await client.flushall()

    yield client

    await client.flushall()
    await client.aclose()
