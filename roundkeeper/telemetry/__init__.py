"""Telemetry observers and completion lifecycle events."""

from .completion import CompletionEvents, CompletionTelemetry
from .observers import (
    HttpAnalyticsObserver,
    LoggingObserver,
    NullObserver,
    TelemetryObserver,
)

__all__ = [
    "CompletionEvents",
    "CompletionTelemetry",
    "HttpAnalyticsObserver",
    "LoggingObserver",
    "NullObserver",
    "TelemetryObserver",
]
