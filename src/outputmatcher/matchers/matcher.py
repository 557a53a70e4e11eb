"""
Message matchers.

A matcher is one registration of a predicate on a listener. It starts
``PENDING`` and becomes ``SATISFIED`` the first time its predicate returns
True for a consumed message. It never goes back.

Matchers are owned by their ``TopicListener`` and mutated only under the
listener's lock. Callers hold a ``MatcherHandle`` instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID, uuid4

from outputmatcher.channels.interface import ChannelMessage
from outputmatcher.predicates import predicate_name
from outputmatcher.types import Predicate


class MatcherState(Enum):
    """
    States of a matcher.

    State transitions:
        PENDING -> SATISFIED
        SATISFIED -> (terminal)
    """

    PENDING = "pending"
    """No consumed message has satisfied the predicate yet."""

    SATISFIED = "satisfied"
    """A message satisfied the predicate; it is recorded as the match."""


@dataclass(frozen=True)
class MatcherHandle:
    """
    Opaque reference to a matcher registered on a listener.

    Attributes:
        matcher_id: Unique ID of the registration
        channel: Name of the listener's channel
    """

    matcher_id: UUID
    channel: str

    def __str__(self) -> str:
        return f"{self.channel}/{self.matcher_id}"


class Matcher:
    """
    A predicate plus its satisfaction state.

    Registering the same predicate twice creates two matchers with distinct
    IDs; each finds its own first match.
    """

    def __init__(
        self,
        predicate: Predicate,
        created_at: float,
        *,
        active: bool = True,
        matcher_id: UUID | None = None,
    ) -> None:
        """
        Initialize a matcher.

        Args:
            predicate: Side-effect-free test over a message payload
            created_at: Clock reading at registration
            active: Whether the live path evaluates the matcher yet. Matchers
                on a rewinding listener start inactive until the rewind ran.
            matcher_id: Explicit ID, generated if omitted
        """
        self._predicate = predicate
        self._created_at = created_at
        self._active = active
        self._matcher_id = matcher_id or uuid4()
        self._name = predicate_name(predicate)
        self._state = MatcherState.PENDING
        self._matched: ChannelMessage | None = None
        self._observed: set[str] = set()

    @property
    def matcher_id(self) -> UUID:
        return self._matcher_id

    @property
    def predicate(self) -> Predicate:
        return self._predicate

    @property
    def name(self) -> str:
        """Descriptive predicate name for logs."""
        return self._name

    @property
    def created_at(self) -> float:
        return self._created_at

    @property
    def state(self) -> MatcherState:
        return self._state

    @property
    def is_satisfied(self) -> bool:
        return self._state is MatcherState.SATISFIED

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def matched(self) -> ChannelMessage | None:
        """The message that satisfied the matcher, if any."""
        return self._matched

    @property
    def observed_count(self) -> int:
        return len(self._observed)

    def activate(self) -> None:
        self._active = True

    def has_observed(self, message_id: str) -> bool:
        return message_id in self._observed

    def should_evaluate(self, message: ChannelMessage) -> bool:
        """True if the matcher is pending and has not seen this message yet."""
        return not self.is_satisfied and message.message_id not in self._observed

    def evaluate(self, message: ChannelMessage) -> bool:
        """
        Evaluate the predicate against a message payload.

        The message is marked as observed before the predicate runs, so a
        predicate that raises is never retried on the same message.

        Args:
            message: Consumed message

        Returns:
            True if this evaluation satisfied the matcher

        Raises:
            Exception: Whatever the predicate raises
        """
        if not self.should_evaluate(message):
            return False
        self._observed.add(message.message_id)
        if not self._predicate(message.payload):
            return False
        self._state = MatcherState.SATISFIED
        self._matched = message
        # No further evaluation, the observed ids are no longer needed
        self._observed.clear()
        return True

    def handle(self, channel: str) -> MatcherHandle:
        return MatcherHandle(matcher_id=self._matcher_id, channel=channel)

    def __repr__(self) -> str:
        return (
            f"Matcher(id={self._matcher_id}, predicate={self._name}, "
            f"state={self._state.value}, active={self._active})"
        )


__all__ = [
    "Matcher",
    "MatcherHandle",
    "MatcherState",
]
