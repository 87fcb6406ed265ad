"""Span helpers for compile instrumentation.

gqlforge only depends on the OpenTelemetry API. Spans are exported by
whatever TracerProvider the embedding tool installed; without one they
are no-ops and cost next to nothing.

Span names are dotted and prefixed with ``gqlforge.``; attributes use the
same prefix (``gqlforge.resource_dir``, ``gqlforge.plugin.stage``).

Example:
    >>> with create_span("gqlforge.compile", attributes={"gqlforge.dry_run": True}) as span:
    ...     span.set_attribute("gqlforge.resource_dir", str(resource_dir))
"""

from __future__ import annotations

import functools
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

import structlog
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode, Tracer

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping

    from opentelemetry.trace import Span

P = ParamSpec("P")
R = TypeVar("R")

TRACER_NAME = "gqlforge"

logger = structlog.get_logger(__name__)

# Key: instrumentation name, Value: tracer bound to the global provider
_tracers: dict[str, Tracer] = {}
_lock = threading.Lock()


def get_tracer(name: str = TRACER_NAME) -> Tracer:
    """Tracer for ``name``, created once and cached.

    Falls back to a NoOpTracer (not cached) when the API cannot hand out a
    tracer, so instrumentation never breaks a compile.
    """
    tracer = _tracers.get(name)
    if tracer is not None:
        return tracer
    with _lock:
        if name not in _tracers:
            try:
                _tracers[name] = trace.get_tracer(name)
            except Exception as e:
                logger.debug("get_tracer.failed", tracer=name, error=str(e))
                return trace.NoOpTracer()
        return _tracers[name]


def reset_tracer() -> None:
    """Forget cached tracers."""
    with _lock:
        _tracers.clear()


@contextmanager
def create_span(name: str, attributes: Mapping[str, Any] | None = None) -> Iterator[Span]:
    """Run the body inside a span named ``name``.

    An exception leaving the body marks the span as failed, is recorded as
    ``exception.type``/``exception.message`` attributes and is re-raised.
    """
    with get_tracer().start_as_current_span(
        name,
        attributes=dict(attributes or {}),
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_attribute("exception.type", type(e).__name__)
            span.set_attribute("exception.message", str(e))
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def traced(*, operation_name: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Wrap every call of the decorated function in ``create_span(operation_name)``."""

    def decorate(fn: Callable[P, R]) -> Callable[P, R]:
        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with create_span(operation_name, {"gqlforge.function": fn.__qualname__}):
                return fn(*args, **kwargs)

        return wrapper

    return decorate


__all__ = [
    "TRACER_NAME",
    "create_span",
    "get_tracer",
    "reset_tracer",
    "traced",
]
