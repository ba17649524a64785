"""Request correlation, JSON logging, and log-safe payload helpers."""

from .privacy import hash_payload, mask_secret, redact_fields
from .telemetry import (
    CORRELATION_ID_HEADER,
    RequestContextFilter,
    RequestContextToken,
    TelemetrySettings,
    bind_request_context,
    configure_logging,
    current_request_id,
    ensure_request_id,
    reset_request_context,
    setup_telemetry,
)

__all__ = [
    "hash_payload",
    "mask_secret",
    "redact_fields",
    "CORRELATION_ID_HEADER",
    "RequestContextFilter",
    "RequestContextToken",
    "TelemetrySettings",
    "bind_request_context",
    "configure_logging",
    "current_request_id",
    "ensure_request_id",
    "reset_request_context",
    "setup_telemetry",
]
