import logging
from decimal import Decimal

from shared.observability import (
    RequestContextFilter,
    TelemetrySettings,
    bind_request_context,
    hash_payload,
    mask_secret,
    redact_fields,
    reset_request_context,
)
from shared.observability.privacy import REDACTED


def test_hash_payload_ignores_key_order() -> None:
    first = hash_payload({"budget": Decimal("15000"), "transactions": [1, 2]})
    second = hash_payload({"transactions": [1, 2], "budget": Decimal("15000")})

    assert first == second
    assert first != hash_payload({"budget": Decimal("15001"), "transactions": [1, 2]})
    assert len(first) == 64


def test_redact_fields_keeps_only_whitelisted_values() -> None:
    redacted = redact_fields({"amount": 245.5, "description": "Campus Cafe"}, ["amount"])

    assert redacted == {"amount": 245.5, "description": REDACTED}


def test_mask_secret_hides_short_keys_entirely() -> None:
    assert mask_secret(None) == ""
    assert mask_secret("short") == REDACTED
    assert mask_secret("sk-live-1234567890abcd") == "...abcd"


def test_request_id_is_attached_to_log_records() -> None:
    log_filter = RequestContextFilter("finance-service")
    record = logging.LogRecord("finance", logging.INFO, __file__, 1, "hello", None, None)

    token = bind_request_context("req-42")
    try:
        assert log_filter.filter(record)
    finally:
        reset_request_context(token)

    assert record.service_name == "finance-service"
    assert record.request_id == "req-42"
    assert record.trace_id is None and record.span_id is None


def test_telemetry_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("ENABLE_TELEMETRY", "yes")
    monkeypatch.setenv("OTEL_SERVICE_NAME", "finance-edge")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.delenv("OTEL_CONSOLE_EXPORT", raising=False)

    settings = TelemetrySettings.from_env("finance-service")

    assert settings.service_name == "finance-edge"
    assert settings.traces_enabled is True
    assert settings.console_export is False
    assert settings.log_level == "DEBUG"
