"""
Unit tests for the OutputMatcher facade.

Tests the register-once, poll-many contract: a check registers its matchers
on the first call only, and repeated check_for() calls with the same
predicates reuse it until it has passed.
"""

from __future__ import annotations

import pytest

from outputmatcher.channels.memory import InMemoryChannel
from outputmatcher.exceptions import OutputTimeoutError, UnknownMatcherError
from outputmatcher.listener import TopicListener
from outputmatcher.output import OutputCheck, OutputMatcher
from outputmatcher.predicates import contains, equals
from outputmatcher.waiting import async_wait_until
from tests.fixtures import wait_for_consumed


@pytest.fixture
def output(cache_listener: TopicListener) -> OutputMatcher:
    return OutputMatcher(cache_listener)


class TestCheckFor:
    """Tests for check_for() registration semantics."""

    def test_requires_a_predicate(self, output: OutputMatcher) -> None:
        with pytest.raises(ValueError, match="at least one predicate"):
            output.check_for()

    @pytest.mark.asyncio
    async def test_check_registers_on_first_call(
        self, output: OutputMatcher, cache_listener: TopicListener
    ) -> None:
        check = output.check_for(equals("X"))
        assert isinstance(check, OutputCheck)
        assert not check.is_registered
        assert cache_listener.stats.matchers_registered == 0

        assert check() is False

        assert check.is_registered
        assert len(check.handles) == 1
        assert cache_listener.stats.matchers_registered == 1

    @pytest.mark.asyncio
    async def test_repeated_polls_do_not_register_again(
        self, output: OutputMatcher, cache_listener: TopicListener
    ) -> None:
        check = output.check_for(equals("X"), equals("Y"))
        for _ in range(5):
            check()

        assert cache_listener.stats.matchers_registered == 2

    @pytest.mark.asyncio
    async def test_idempotent_registration(
        self, output: OutputMatcher, cache_listener: TopicListener
    ) -> None:
        """check_for with the same predicates before a pass reuses the check."""
        predicate = equals("X")
        first = output.check_for(predicate)
        first()
        second = output.check_for(predicate)
        second()

        assert first is second
        assert cache_listener.stats.matchers_registered == 1

    @pytest.mark.asyncio
    async def test_keyed_by_predicate_identity(
        self, output: OutputMatcher, cache_listener: TopicListener
    ) -> None:
        assert output.check_for(equals("X")) is not output.check_for(equals("X"))

    @pytest.mark.asyncio
    async def test_fresh_check_after_pass(
        self,
        output: OutputMatcher,
        cache_listener: TopicListener,
        fire_and_forget_channel: InMemoryChannel,
    ) -> None:
        predicate = equals("X")
        check = output.check_for(predicate)
        check()
        fire_and_forget_channel.publish("X")
        await async_wait_until(check, timeout=3.0, interval=0.005)

        again = output.check_for(predicate)

        assert again is not check
        # The message claimed by the first check is not offered again
        assert again() is False
        assert cache_listener.stats.matchers_registered == 2

        fire_and_forget_channel.publish("X")
        await async_wait_until(again, timeout=3.0, interval=0.005)

    @pytest.mark.asyncio
    async def test_replaced_check_keeps_its_result(
        self,
        output: OutputMatcher,
        cache_listener: TopicListener,
        fire_and_forget_channel: InMemoryChannel,
    ) -> None:
        predicate = equals("X")
        first = output.check_for(predicate)
        first()
        fire_and_forget_channel.publish("X")
        await async_wait_until(first, timeout=3.0, interval=0.005)
        [first_handle] = first.handles

        second = output.check_for(predicate)

        assert output.handles == []
        with pytest.raises(UnknownMatcherError):
            cache_listener.is_satisfied(first_handle)
        assert first() is True
        assert first.pending_predicates() == []
        [message] = first.matched_messages()
        assert message is not None
        assert message.payload == "X"

        second()
        assert len(output.handles) == 1
        assert cache_listener.pending_count == 1

    @pytest.mark.asyncio
    async def test_fresh_check_replays_history_on_rewind(
        self,
        rewind_listener: TopicListener,
        replayable_channel: InMemoryChannel,
    ) -> None:
        """With REWIND a fresh check sees the whole history again."""
        output = OutputMatcher(rewind_listener)
        predicate = equals("X")
        replayable_channel.publish("X")
        [first] = await output.wait_for(predicate, timeout=3.0, interval=0.005)

        [again] = await output.wait_for(predicate, timeout=3.0, interval=0.005)

        assert again.message_id == first.message_id
        assert replayable_channel.published == ["X"]

    @pytest.mark.asyncio
    async def test_all_predicates_required(
        self,
        output: OutputMatcher,
        cache_listener: TopicListener,
        fire_and_forget_channel: InMemoryChannel,
    ) -> None:
        check = output.check_for(equals("a"), equals("b"))
        check()
        fire_and_forget_channel.publish("a")
        await wait_for_consumed(cache_listener, 1)

        assert check() is False
        assert check.pending_predicates() == ["equals('b')"]

        fire_and_forget_channel.publish("b")
        await async_wait_until(check, timeout=3.0, interval=0.005)

    @pytest.mark.asyncio
    async def test_matches_uses_cached_backlog(
        self,
        output: OutputMatcher,
        cache_listener: TopicListener,
        fire_and_forget_channel: InMemoryChannel,
    ) -> None:
        fire_and_forget_channel.publish("hello")
        await wait_for_consumed(cache_listener, 1)

        assert output.matches(contains("ell")) is True


class TestWaitFor:
    """Tests for wait_for()."""

    @pytest.mark.asyncio
    async def test_returns_matched_messages(
        self, output: OutputMatcher, fire_and_forget_channel: InMemoryChannel
    ) -> None:
        fire_and_forget_channel.publish_many(["a", "b"])

        messages = await output.wait_for(equals("b"), equals("a"), timeout=3.0, interval=0.005)

        assert [m.payload for m in messages] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_timeout_names_pending_predicates(self, output: OutputMatcher) -> None:
        with pytest.raises(OutputTimeoutError) as exc_info:
            await output.wait_for(equals("never"), timeout=0.05, interval=0.01)

        assert "equals('never')" in str(exc_info.value)
        assert "uppercase.out" in str(exc_info.value)
        assert exc_info.value.timeout == 0.05

    @pytest.mark.asyncio
    async def test_timeout_is_a_timeout_error(self, output: OutputMatcher) -> None:
        with pytest.raises(TimeoutError):
            await output.wait_for(equals("never"), timeout=0.02, interval=0.01)


class TestMatchedMessagesAndReset:
    """Tests for matched_messages() and reset()."""

    @pytest.mark.asyncio
    async def test_matched_messages_after_pass(
        self, output: OutputMatcher, fire_and_forget_channel: InMemoryChannel
    ) -> None:
        predicate = equals("X")
        fire_and_forget_channel.publish("X")
        await output.wait_for(predicate, timeout=3.0, interval=0.005)

        [message] = output.matched_messages(predicate)
        assert message is not None
        assert message.payload == "X"

    def test_matched_messages_without_check(self, output: OutputMatcher) -> None:
        assert output.matched_messages(equals("X"), equals("Y")) == [None, None]

    @pytest.mark.asyncio
    async def test_reset_releases_matchers(
        self, output: OutputMatcher, cache_listener: TopicListener
    ) -> None:
        check = output.check_for(equals("X"), equals("Y"))
        check()
        assert cache_listener.pending_count == 2

        output.reset()

        assert cache_listener.pending_count == 0
        assert output.handles == []

    @pytest.mark.asyncio
    async def test_reset_tolerates_released_handles(
        self, output: OutputMatcher, cache_listener: TopicListener
    ) -> None:
        check = output.check_for(equals("X"))
        check()
        cache_listener.release(check.handles[0])

        output.reset()

        assert output.handles == []
