"""Library exceptions for the outputmatcher package."""

from __future__ import annotations

from uuid import UUID


class OutputMatcherError(Exception):
    """Base exception for outputmatcher library."""

    pass


class SubscriptionError(OutputMatcherError):
    """
    Raised when a listener cannot subscribe to, or lost, its channel.

    Subscription failures are fatal for the listener. They are surfaced to
    whoever registers a matcher (or polls an unsatisfied one) after the
    failure happened.

    Attributes:
        channel: Name of the channel the listener was attached to
        cause: The underlying transport exception, if any
    """

    def __init__(self, channel: str, cause: BaseException | None = None) -> None:
        self.channel = channel
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Subscription to channel '{channel}' failed{detail}")


class ListenerNotRunningError(OutputMatcherError):
    """Raised when matchers are registered on a listener that was never started."""

    def __init__(self, channel: str) -> None:
        self.channel = channel
        super().__init__(
            f"Listener for channel '{channel}' is not running. Call start() first."
        )


class PredicateEvaluationError(OutputMatcherError):
    """
    A predicate raised while being evaluated against a message.

    The message is treated as a non-match for that matcher and consumption
    continues. Instances are recorded on the listener for inspection, they
    are never raised out of the consume loop.

    Attributes:
        matcher_id: ID of the matcher whose predicate failed
        predicate_name: Descriptive name of the predicate
        message_id: ID of the message being evaluated
        cause: The exception raised by the predicate
    """

    def __init__(
        self,
        matcher_id: UUID,
        predicate_name: str,
        message_id: str,
        cause: BaseException,
    ) -> None:
        self.matcher_id = matcher_id
        self.predicate_name = predicate_name
        self.message_id = message_id
        self.cause = cause
        super().__init__(
            f"Predicate {predicate_name} (matcher {matcher_id}) failed on "
            f"message {message_id}: {type(cause).__name__}: {cause}"
        )


class CacheOverflowError(OutputMatcherError):
    """
    Recorded when the message cache drops its oldest record before TTL expiry.

    Overflow degrades race recovery for late matchers but never stops the
    listener, so this is logged and counted rather than raised.
    """

    def __init__(self, max_size: int, dropped_message_id: str) -> None:
        self.max_size = max_size
        self.dropped_message_id = dropped_message_id
        super().__init__(
            f"Message cache full ({max_size} records), dropped message {dropped_message_id}"
        )


class UnknownMatcherError(OutputMatcherError, KeyError):
    """Raised when a handle does not refer to a matcher owned by the listener."""

    def __init__(self, matcher_id: UUID) -> None:
        self.matcher_id = matcher_id
        super().__init__(f"Unknown matcher: {matcher_id}")

    def __str__(self) -> str:
        return str(self.args[0])


class RewindNotSupportedError(OutputMatcherError):
    """Raised when a rewind is requested from a fire-and-forget channel."""

    def __init__(self, channel: str) -> None:
        self.channel = channel
        super().__init__(f"Channel '{channel}' does not support rewinding its position")


class PayloadDecodeError(OutputMatcherError, ValueError):
    """Raised when raw message bytes cannot be decoded into a payload."""

    def __init__(self, decoder: str, message: str) -> None:
        self.decoder = decoder
        super().__init__(f"{decoder} could not decode payload: {message}")


class OutputTimeoutError(OutputMatcherError, TimeoutError):
    """
    Raised by the waiting helpers when a condition is not met in time.

    Attributes:
        description: What was being waited for
        timeout: The timeout that elapsed, in seconds
    """

    def __init__(self, description: str, timeout: float) -> None:
        self.description = description
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for {description}")


class ChannelNotAvailableError(ImportError):
    """Base for errors raised when an optional broker client is not installed."""

    package: str = ""
    extra: str = ""

    def __init__(self) -> None:
        super().__init__(
            f"{self.package} package is not installed. "
            f"Install it with: pip install outputmatcher-py[{self.extra}]"
        )


class KafkaNotAvailableError(ChannelNotAvailableError):
    """Raised when aiokafka package is not installed."""

    package = "aiokafka"
    extra = "kafka"


class RedisNotAvailableError(ChannelNotAvailableError):
    """Raised when redis package is not installed."""

    package = "redis"
    extra = "redis"


class RabbitMQNotAvailableError(ChannelNotAvailableError):
    """Raised when aio-pika package is not installed."""

    package = "aio-pika"
    extra = "rabbitmq"


__all__ = [
    "OutputMatcherError",
    "SubscriptionError",
    "ListenerNotRunningError",
    "PredicateEvaluationError",
    "CacheOverflowError",
    "UnknownMatcherError",
    "RewindNotSupportedError",
    "PayloadDecodeError",
    "OutputTimeoutError",
    "ChannelNotAvailableError",
    "KafkaNotAvailableError",
    "RedisNotAvailableError",
    "RabbitMQNotAvailableError",
]
