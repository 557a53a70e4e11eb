"""
Standard span attributes for outputmatcher.

Attribute names follow OpenTelemetry messaging semantic conventions where
they exist, and use the ``outputmatcher.`` namespace otherwise.
"""

# =============================================================================
# Channel / Messaging Attributes (OTEL semantic)
# =============================================================================

ATTR_MESSAGING_SYSTEM = "messaging.system"
"""Messaging system name (e.g., 'kafka', 'rabbitmq', 'redis', 'memory')."""

ATTR_MESSAGING_DESTINATION = "messaging.destination.name"
"""Topic, stream or exchange the listener is attached to."""

ATTR_MESSAGING_OPERATION = "messaging.operation"
"""Messaging operation type ('receive', 'process')."""

ATTR_MESSAGE_ID = "messaging.message.id"
"""Channel-scoped identifier of the message being processed."""

ATTR_BATCH_SIZE = "messaging.batch.message_count"
"""Number of messages in a fetched batch (integer)."""

# =============================================================================
# Listener Attributes
# =============================================================================

ATTR_CHANNEL_NAME = "outputmatcher.channel.name"
"""Logical channel name the listener owns."""

ATTR_REPLAY_STRATEGY = "outputmatcher.listener.strategy"
"""Race recovery strategy ('rewind' or 'cache')."""

ATTR_PENDING_COUNT = "outputmatcher.listener.pending"
"""Number of pending matchers at the time of the span (integer)."""

ATTR_MATCH_COUNT = "outputmatcher.listener.matches"
"""Number of matchers satisfied while processing (integer)."""

# =============================================================================
# Matcher Attributes
# =============================================================================

ATTR_MATCHER_ID = "outputmatcher.matcher.id"
"""Unique identifier of a matcher (UUID string)."""

ATTR_PREDICATE_NAME = "outputmatcher.matcher.predicate"
"""Descriptive name of the matcher's predicate."""

ATTR_CACHE_SIZE = "outputmatcher.cache.size"
"""Number of records in the message cache (integer)."""

ATTR_CACHE_HIT = "outputmatcher.cache.hit"
"""Whether a new matcher was satisfied from the cache (boolean)."""

__all__ = [
    "ATTR_MESSAGING_SYSTEM",
    "ATTR_MESSAGING_DESTINATION",
    "ATTR_MESSAGING_OPERATION",
    "ATTR_MESSAGE_ID",
    "ATTR_BATCH_SIZE",
    "ATTR_CHANNEL_NAME",
    "ATTR_REPLAY_STRATEGY",
    "ATTR_PENDING_COUNT",
    "ATTR_MATCH_COUNT",
    "ATTR_MATCHER_ID",
    "ATTR_PREDICATE_NAME",
    "ATTR_CACHE_SIZE",
    "ATTR_CACHE_HIT",
]
