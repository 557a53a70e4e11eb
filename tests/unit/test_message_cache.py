"""
Unit tests for MessageCache.

Tests TTL eviction, overflow handling, received-before queries and
insertion ordering.
"""

from uuid import uuid4

import pytest

from outputmatcher.cache import MessageCache, MessageRecord
from outputmatcher.channels.interface import ChannelMessage
from tests.fixtures import FakeClock


def make_message(n: int) -> ChannelMessage:
    return ChannelMessage(message_id=f"test:{n}", payload=f"payload-{n}")


@pytest.fixture
def cache(fake_clock: FakeClock) -> MessageCache:
    return MessageCache(ttl=10.0, max_size=3, clock=fake_clock)


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:
    """Tests for cache construction and validation."""

    def test_properties(self, cache: MessageCache) -> None:
        assert cache.ttl == 10.0
        assert cache.max_size == 3
        assert len(cache) == 0
        assert cache.evicted_count == 0
        assert cache.overflow_count == 0

    @pytest.mark.parametrize("ttl", [0, -1.0])
    def test_rejects_non_positive_ttl(self, ttl: float) -> None:
        with pytest.raises(ValueError, match="ttl"):
            MessageCache(ttl=ttl)

    def test_rejects_non_positive_max_size(self) -> None:
        with pytest.raises(ValueError, match="max_size"):
            MessageCache(ttl=1.0, max_size=0)

    def test_unbounded_size_allowed(self) -> None:
        cache = MessageCache(ttl=1.0, max_size=None)
        assert cache.max_size is None


# =============================================================================
# Insert and Query
# =============================================================================


class TestInsertAndQuery:
    """Tests for insert() and query()."""

    def test_insert_returns_record(self, cache: MessageCache, fake_clock: FakeClock) -> None:
        matcher_id = uuid4()
        record = cache.insert(make_message(1), consumed_by=[matcher_id])

        assert isinstance(record, MessageRecord)
        assert record.message.message_id == "test:1"
        assert record.received_at == fake_clock.now
        assert record.consumed_by == {matcher_id}

    def test_query_returns_insertion_order(self, cache: MessageCache) -> None:
        for n in range(3):
            cache.insert(make_message(n))

        ids = [r.message.message_id for r in cache.query()]
        assert ids == ["test:0", "test:1", "test:2"]

    def test_sequences_increase(self, cache: MessageCache) -> None:
        first = cache.insert(make_message(1))
        second = cache.insert(make_message(2))
        assert second.sequence > first.sequence

    def test_query_received_before(self, cache: MessageCache, fake_clock: FakeClock) -> None:
        cache.insert(make_message(1))
        cutoff = fake_clock.now
        fake_clock.advance(1.0)
        cache.insert(make_message(2))

        ids = [r.message.message_id for r in cache.query(received_before=cutoff)]
        assert ids == ["test:1"]

    def test_query_includes_records_at_cutoff(
        self, cache: MessageCache, fake_clock: FakeClock
    ) -> None:
        cache.insert(make_message(1))
        assert len(cache.query(received_before=fake_clock.now)) == 1

    def test_iteration_is_a_snapshot(self, cache: MessageCache) -> None:
        cache.insert(make_message(1))
        records = iter(cache)
        cache.insert(make_message(2))
        assert [r.message.message_id for r in records] == ["test:1"]

    def test_clear(self, cache: MessageCache) -> None:
        cache.insert(make_message(1))
        cache.clear()
        assert len(cache) == 0
        assert cache.query() == []

    def test_discard_claimed_record(self, cache: MessageCache) -> None:
        first = cache.insert(make_message(1))
        second = cache.insert(make_message(2))

        assert cache.discard(first) is True
        assert cache.query() == [second]
        assert cache.discard(first) is False


# =============================================================================
# TTL Eviction
# =============================================================================


class TestEviction:
    """Tests for TTL-based eviction."""

    def test_record_kept_until_ttl(self, cache: MessageCache, fake_clock: FakeClock) -> None:
        cache.insert(make_message(1))
        fake_clock.advance(10.0)
        assert len(cache.query()) == 1

    def test_record_evicted_after_ttl(self, cache: MessageCache, fake_clock: FakeClock) -> None:
        """A record inserted at t is gone from a query at t + ttl + epsilon."""
        cache.insert(make_message(1))
        fake_clock.advance(10.0 + 1e-6)

        assert cache.query() == []
        assert cache.evicted_count == 1

    def test_evict_returns_removed_count(
        self, cache: MessageCache, fake_clock: FakeClock
    ) -> None:
        cache.insert(make_message(1))
        cache.insert(make_message(2))
        fake_clock.advance(5.0)
        cache.insert(make_message(3))
        fake_clock.advance(6.0)

        assert cache.evict() == 2
        assert [r.message.message_id for r in cache] == ["test:3"]

    def test_eviction_ignores_match_status(
        self, cache: MessageCache, fake_clock: FakeClock
    ) -> None:
        cache.insert(make_message(1), consumed_by=[uuid4()])
        fake_clock.advance(11.0)
        assert cache.evict() == 1

    def test_insert_evicts_expired_first(
        self, cache: MessageCache, fake_clock: FakeClock
    ) -> None:
        for n in range(3):
            cache.insert(make_message(n))
        fake_clock.advance(11.0)

        cache.insert(make_message(3))

        assert len(cache) == 1
        assert cache.overflow_count == 0


# =============================================================================
# Overflow
# =============================================================================


class TestOverflow:
    """Tests for size-capped behaviour."""

    def test_overflow_drops_oldest(self, cache: MessageCache) -> None:
        for n in range(4):
            cache.insert(make_message(n))

        ids = [r.message.message_id for r in cache]
        assert ids == ["test:1", "test:2", "test:3"]
        assert cache.overflow_count == 1

    def test_overflow_records_diagnostic(self, cache: MessageCache) -> None:
        for n in range(4):
            cache.insert(make_message(n))

        assert cache.last_overflow is not None
        assert cache.last_overflow.dropped_message_id == "test:0"
        assert cache.last_overflow.max_size == 3

    def test_overflow_logs_warning(
        self, cache: MessageCache, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level("WARNING", logger="outputmatcher.cache"):
            for n in range(4):
                cache.insert(make_message(n))

        assert any("dropped message test:0" in r.getMessage() for r in caplog.records)
