"""
Observability utilities for outputmatcher.

Tracing is optional. Without the ``telemetry`` extra every listener gets a
NullTracer and its spans cost nothing.

Example:
    >>> # Spans on the global OpenTelemetry provider
    >>> listener = TopicListener(channel, ListenerConfig(enable_tracing=True))
    >>>
    >>> # Or on a provider of your own
    >>> listener = TopicListener(channel, tracer=OpenTelemetryTracer(__name__, provider))
"""

from outputmatcher.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_CACHE_HIT,
    ATTR_CACHE_SIZE,
    ATTR_CHANNEL_NAME,
    ATTR_MATCH_COUNT,
    ATTR_MATCHER_ID,
    ATTR_MESSAGE_ID,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_SYSTEM,
    ATTR_PENDING_COUNT,
    ATTR_PREDICATE_NAME,
    ATTR_REPLAY_STRATEGY,
)
from outputmatcher.observability.tracer import (
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)
from outputmatcher.observability.tracing import (
    OTEL_AVAILABLE,
    SpanAttributes,
    traced,
)

__all__ = [
    "OTEL_AVAILABLE",
    "SpanAttributes",
    "traced",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "SpanKindEnum",
    "create_tracer",
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
