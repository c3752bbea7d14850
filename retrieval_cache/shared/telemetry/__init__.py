"""Shared telemetry: logging setup, OpenTelemetry config, and tracing helpers."""

from retrieval_cache.shared.telemetry.logging import setup_logging
from retrieval_cache.shared.telemetry.telemetry import TelemetryConfig
from retrieval_cache.shared.telemetry.tracing import (
    add_span_attributes,
    add_span_event,
    traced,
)

__all__ = [
    "setup_logging",
    "TelemetryConfig",
    "traced",
    "add_span_attributes",
    "add_span_event",
]
