"""
Environment-driven settings for the ledger dashboard and HTTP surface.

LLM provider settings live in `shared.provider_settings`; this module covers
the remaining knobs: the monthly budget ceiling, the average-per-day window,
how many transactions an advice prompt may carry, and the CORS origin.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from expense_model import MAX_AMOUNT
from shared.provider_settings import ProviderSettingsError, parse_int

DEFAULT_MONTHLY_BUDGET = Decimal(15000)
DEFAULT_AVERAGE_WINDOW_DAYS = 15
DEFAULT_ADVICE_TRANSACTION_LIMIT = 20
DEFAULT_CORS_ALLOW_ORIGIN = "*"


class SettingsError(ProviderSettingsError):
    """Raised when ledger settings are malformed."""


@dataclass(frozen=True, slots=True)
class LedgerSettings:
    monthly_budget: Decimal
    average_window_days: int
    advice_transaction_limit: int
    cors_allow_origin: str


def load_ledger_settings() -> LedgerSettings:
    monthly_budget = _parse_decimal(os.getenv("MONTHLY_BUDGET"), DEFAULT_MONTHLY_BUDGET, "MONTHLY_BUDGET")
    window_days = parse_int(os.getenv("AVERAGE_WINDOW_DAYS"), DEFAULT_AVERAGE_WINDOW_DAYS, "AVERAGE_WINDOW_DAYS")
    transaction_limit = parse_int(
        os.getenv("ADVICE_TRANSACTION_LIMIT"),
        DEFAULT_ADVICE_TRANSACTION_LIMIT,
        "ADVICE_TRANSACTION_LIMIT",
    )

    if window_days <= 0:
        raise SettingsError(f"AVERAGE_WINDOW_DAYS must be positive (received '{window_days}')")
    if transaction_limit <= 0:
        raise SettingsError(f"ADVICE_TRANSACTION_LIMIT must be positive (received '{transaction_limit}')")

    return LedgerSettings(
        monthly_budget=monthly_budget,
        average_window_days=window_days,
        advice_transaction_limit=transaction_limit,
        cors_allow_origin=(os.getenv("CORS_ALLOW_ORIGIN") or "").strip() or DEFAULT_CORS_ALLOW_ORIGIN,
    )


def _parse_decimal(raw_value: str | None, default: Decimal, env_key: str) -> Decimal:
    if raw_value is None or raw_value.strip() == "":
        return default
    try:
        value = Decimal(raw_value.strip())
    except InvalidOperation as exc:
        raise SettingsError(f"{env_key} must be numeric (received '{raw_value}')") from exc
    if not value.is_finite() or abs(value) > MAX_AMOUNT:
        raise SettingsError(f"{env_key} must be a finite amount up to {MAX_AMOUNT} (received '{raw_value}')")
    return value
