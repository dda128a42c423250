"""Telemetry - per-execution structured, redacted event log."""

from .recorder import (
    PipelineTelemetry,
    StepTiming,
    TelemetryEvent,
    create_telemetry,
)
from .sanitize import (
    SENSITIVE_KEYS,
    is_sensitive_key,
    sanitize_data,
    scrub_secrets,
)

__all__ = [
    "PipelineTelemetry",
    "StepTiming",
    "TelemetryEvent",
    "create_telemetry",
    "SENSITIVE_KEYS",
    "is_sensitive_key",
    "sanitize_data",
    "scrub_secrets",
]
