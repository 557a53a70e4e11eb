"""
Span creation for topic listeners.

A listener never talks to OpenTelemetry directly. It holds a ``Tracer``,
built by ``create_tracer()`` from ``ListenerConfig.enable_tracing`` or passed
in by the caller, and opens one span per step of its life:

    outputmatcher.listener.start      subscribing to the channel
    outputmatcher.listener.register   registering a matcher (and the cache scan)
    outputmatcher.listener.rewind     resetting the channel for new matchers
    outputmatcher.listener.process    one fetched batch, CONSUMER kind
    outputmatcher.listener.stop       shutdown

A span context yields an object with ``set_attribute`` when tracing is on
and None when it is off, so results known only after the work are attached
behind an ``if span:`` check.
"""

from __future__ import annotations

from contextlib import AbstractContextManager, nullcontext
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from outputmatcher.observability.tracing import OTEL_AVAILABLE, trace


class SpanKindEnum(Enum):
    """Role of a span. Batches handled by the consume loop are CONSUMER spans."""

    INTERNAL = "internal"
    CONSUMER = "consumer"


@runtime_checkable
class Tracer(Protocol):
    """What a listener needs from a tracer."""

    @property
    def enabled(self) -> bool: ...

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Any]: ...

    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Any]: ...


class NullTracer:
    """Tracer for listeners with tracing off, or without OpenTelemetry installed."""

    @property
    def enabled(self) -> bool:
        return False

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[None]:
        return nullcontext()

    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[None]:
        return nullcontext()


class OpenTelemetryTracer:
    """
    Opens listener spans through OpenTelemetry.

    Args:
        tracer_name: Instrumentation scope, usually the module's __name__
        tracer_provider: Provider to use instead of the global one

    Raises:
        ImportError: If OpenTelemetry is not installed
    """

    def __init__(self, tracer_name: str, tracer_provider: Any = None) -> None:
        if not OTEL_AVAILABLE:
            raise ImportError(
                "opentelemetry-api is required for tracing. "
                "Install with: pip install outputmatcher-py[telemetry]"
            )
        self._tracer = trace.get_tracer(tracer_name, tracer_provider=tracer_provider)

    @property
    def enabled(self) -> bool:
        return True

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Any]:
        return self.span_with_kind(name, SpanKindEnum.INTERNAL, attributes)

    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Any]:
        return self._tracer.start_as_current_span(
            name,
            kind=getattr(trace.SpanKind, kind.name),
            attributes=_without_none(attributes),
        )


def _without_none(attributes: dict[str, Any] | None) -> dict[str, Any]:
    # OpenTelemetry drops None-valued attributes with a warning
    return {key: value for key, value in (attributes or {}).items() if value is not None}


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Build the tracer a listener uses when none is injected.

    Returns:
        OpenTelemetryTracer when tracing is enabled and OpenTelemetry is
        installed, NullTracer otherwise
    """
    if enable_tracing and OTEL_AVAILABLE:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "NullTracer",
    "OpenTelemetryTracer",
    "SpanKindEnum",
    "Tracer",
    "create_tracer",
]
