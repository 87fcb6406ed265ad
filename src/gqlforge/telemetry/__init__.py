"""Tracing and structured logging for gqlforge."""

from __future__ import annotations

from gqlforge.telemetry.logging import add_trace_context, configure_logging
from gqlforge.telemetry.tracing import create_span, get_tracer, reset_tracer, traced

__all__ = [
    "add_trace_context",
    "configure_logging",
    "create_span",
    "get_tracer",
    "reset_tracer",
    "traced",
]
