"""
OpenTelemetry detection and the ``traced`` decorator for listener coroutines.

OpenTelemetry is an optional extra (``pip install outputmatcher-py[telemetry]``).
``OTEL_AVAILABLE`` is the one place the import is attempted; everything else
in the package asks this flag.
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any, Concatenate, ParamSpec, TypeVar

try:
    from opentelemetry import trace

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False
    trace = None  # type: ignore[assignment]


S = TypeVar("S")
P = ParamSpec("P")
R = TypeVar("R")

SpanAttributes = Callable[[Any], dict[str, Any]]


def traced(
    name: str,
    attributes: SpanAttributes | None = None,
) -> Callable[
    [Callable[Concatenate[S, P], Awaitable[R]]],
    Callable[Concatenate[S, P], Awaitable[R]],
]:
    """
    Run an async method inside a span opened on the instance's ``_tracer``.

    ``attributes`` is called with the instance when the span opens, so the
    span describes the instance as it is at that moment (its channel, how
    many matchers are still pending). Instances whose ``_enable_tracing``
    is False run the method without a span.

    Args:
        name: Span name, e.g. "outputmatcher.listener.stop"
        attributes: Builds span attributes from the instance

    Example:
        >>> class TopicListener:
        ...     @traced("outputmatcher.listener.stop", lambda self: {ATTR_CHANNEL_NAME: self.name})
        ...     async def stop(self) -> None:
        ...         ...
    """

    def decorator(
        method: Callable[Concatenate[S, P], Awaitable[R]],
    ) -> Callable[Concatenate[S, P], Awaitable[R]]:
        @functools.wraps(method)
        async def wrapper(self: S, *args: P.args, **kwargs: P.kwargs) -> R:
            tracer = getattr(self, "_tracer", None)
            if tracer is None or not getattr(self, "_enable_tracing", False):
                return await method(self, *args, **kwargs)
            with tracer.span(name, attributes(self) if attributes else None):
                return await method(self, *args, **kwargs)

        return wrapper

    return decorator


__all__ = [
    "OTEL_AVAILABLE",
    "SpanAttributes",
    "traced",
]
