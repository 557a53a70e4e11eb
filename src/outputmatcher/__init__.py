"""
outputmatcher - Output verification for message-broker-driven applications.

This library provides:
- Topic listeners that consume an output channel continuously
- Race recovery for late assertions: rewind for Kafka and Redis Streams,
  a TTL-bounded message cache for RabbitMQ
- A register-once, poll-many check facade for "wait until true" loops
- Log line matching with minimum occurrence counts
- Async and synchronous verification harnesses
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("outputmatcher-py")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from outputmatcher.cache import MessageCache, MessageRecord
from outputmatcher.channels import (
    KAFKA_AVAILABLE,
    RABBITMQ_AVAILABLE,
    REDIS_AVAILABLE,
    Channel,
    ChannelMessage,
    InMemoryChannel,
    JsonDecoder,
    KafkaChannel,
    KafkaChannelConfig,
    ModelDecoder,
    PayloadDecoder,
    RabbitMQChannel,
    RabbitMQChannelConfig,
    RawDecoder,
    RedisStreamChannel,
    RedisStreamChannelConfig,
    TextDecoder,
)
from outputmatcher.exceptions import (
    CacheOverflowError,
    ChannelNotAvailableError,
    KafkaNotAvailableError,
    ListenerNotRunningError,
    OutputMatcherError,
    OutputTimeoutError,
    PayloadDecodeError,
    PredicateEvaluationError,
    RabbitMQNotAvailableError,
    RedisNotAvailableError,
    RewindNotSupportedError,
    SubscriptionError,
    UnknownMatcherError,
)
from outputmatcher.harness import VerificationHarness
from outputmatcher.listener import (
    ListenerConfig,
    ListenerStats,
    ReplayStrategy,
    TopicListener,
)
from outputmatcher.matchers import (
    LogListener,
    LogMatcher,
    Matcher,
    MatcherHandle,
    MatcherState,
)
from outputmatcher.output import OutputCheck, OutputMatcher
from outputmatcher.predicates import (
    all_of,
    any_of,
    contains,
    equals,
    has_fields,
    matches_regex,
    not_,
    predicate_name,
)
from outputmatcher.sync import SyncVerificationHarness
from outputmatcher.types import CheckFn, Clock, MatcherId, Predicate
from outputmatcher.waiting import async_wait_until, wait_until

__all__ = [
    "__version__",
    # Listener
    "TopicListener",
    "ListenerConfig",
    "ListenerStats",
    "ReplayStrategy",
    # Matchers
    "Matcher",
    "MatcherHandle",
    "MatcherState",
    "LogMatcher",
    "LogListener",
    # Facade and harness
    "OutputCheck",
    "OutputMatcher",
    "VerificationHarness",
    "SyncVerificationHarness",
    # Cache
    "MessageCache",
    "MessageRecord",
    # Channels
    "Channel",
    "ChannelMessage",
    "InMemoryChannel",
    "KAFKA_AVAILABLE",
    "KafkaChannel",
    "KafkaChannelConfig",
    "REDIS_AVAILABLE",
    "RedisStreamChannel",
    "RedisStreamChannelConfig",
    "RABBITMQ_AVAILABLE",
    "RabbitMQChannel",
    "RabbitMQChannelConfig",
    # Codecs
    "PayloadDecoder",
    "RawDecoder",
    "TextDecoder",
    "JsonDecoder",
    "ModelDecoder",
    # Predicates
    "equals",
    "contains",
    "matches_regex",
    "has_fields",
    "all_of",
    "any_of",
    "not_",
    "predicate_name",
    # Waiting
    "wait_until",
    "async_wait_until",
    # Types
    "Predicate",
    "CheckFn",
    "Clock",
    "MatcherId",
    # Exceptions
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
