from decimal import Decimal

import pytest

from advice_provider import DeterministicAdviceProvider, MockAdviceProvider, build_advice_provider
from providers.openai_advice import OpenAIAdviceProvider
from receipt_provider import MockReceiptProvider, build_receipt_provider
from settings import SettingsError, load_ledger_settings
from shared.provider_settings import ProviderSettingsError, load_provider_settings

ADVISOR_ENV = dict(
    provider_env="ADVISOR_PROVIDER",
    timeout_env="ADVISOR_PROVIDER_TIMEOUT_SECONDS",
    temperature_env="ADVISOR_PROVIDER_TEMPERATURE",
    max_tokens_env="ADVISOR_PROVIDER_MAX_TOKENS",
)


def test_defaults_target_openai(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("ADVISOR_PROVIDER", "OPENAI_API_KEY", "OPENAI_MODEL", "OPENAI_API_BASE", "ADVISOR_PROVIDER_TIMEOUT_SECONDS"):
        monkeypatch.delenv(key, raising=False)

    settings = load_provider_settings(**ADVISOR_ENV)

    assert settings.provider_name == "openai"
    assert settings.timeout_seconds == 30.0
    assert settings.temperature == 0.7
    assert settings.max_output_tokens == 500
    assert settings.openai.api_key is None
    assert settings.openai.model == "gpt-4o-mini"


def test_env_overrides_are_parsed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ADVISOR_PROVIDER", " OpenAI ")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4o")
    monkeypatch.setenv("ADVISOR_PROVIDER_TIMEOUT_SECONDS", "12.5")
    monkeypatch.setenv("ADVISOR_PROVIDER_MAX_TOKENS", "256")

    settings = load_provider_settings(**ADVISOR_ENV)

    assert settings.provider_name == "openai"
    assert settings.timeout_seconds == 12.5
    assert settings.max_output_tokens == 256
    assert settings.openai.api_key == "sk-test"
    assert settings.openai.model == "gpt-4o"


@pytest.mark.parametrize(
    "key,value",
    [
        ("ADVISOR_PROVIDER", "claude"),
        ("ADVISOR_PROVIDER_TIMEOUT_SECONDS", "soon"),
        ("ADVISOR_PROVIDER_TIMEOUT_SECONDS", "0"),
        ("ADVISOR_PROVIDER_MAX_TOKENS", "many"),
    ],
)
def test_malformed_values_raise(monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
    monkeypatch.setenv(key, value)

    with pytest.raises(ProviderSettingsError):
        load_provider_settings(**ADVISOR_ENV)


def test_deterministic_provider_has_no_openai_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ADVISOR_PROVIDER", "deterministic")

    settings = load_provider_settings(**ADVISOR_ENV)

    assert settings.openai is None
    assert isinstance(build_advice_provider(settings.provider_name, settings=settings), DeterministicAdviceProvider)


def test_advice_provider_factory() -> None:
    assert isinstance(build_advice_provider("mock"), MockAdviceProvider)
    assert isinstance(build_advice_provider("openai"), OpenAIAdviceProvider)
    with pytest.raises(ValueError):
        build_advice_provider("astrology")


def test_receipt_provider_factory() -> None:
    assert isinstance(build_receipt_provider("mock"), MockReceiptProvider)
    with pytest.raises(ValueError):
        build_receipt_provider("deterministic")


def test_ledger_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("MONTHLY_BUDGET", "AVERAGE_WINDOW_DAYS", "ADVICE_TRANSACTION_LIMIT", "CORS_ALLOW_ORIGIN"):
        monkeypatch.delenv(key, raising=False)

    settings = load_ledger_settings()

    assert settings.monthly_budget == Decimal(15000)
    assert settings.average_window_days == 15
    assert settings.advice_transaction_limit == 20
    assert settings.cors_allow_origin == "*"


@pytest.mark.parametrize(
    "key,value",
    [
        ("MONTHLY_BUDGET", "fifteen"),
        ("MONTHLY_BUDGET", "inf"),
        ("MONTHLY_BUDGET", "1e5000"),
        ("AVERAGE_WINDOW_DAYS", "0"),
        ("ADVICE_TRANSACTION_LIMIT", "-1"),
    ],
)
def test_ledger_settings_reject_bad_values(monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
    monkeypatch.setenv(key, value)

    with pytest.raises(ProviderSettingsError):
        load_ledger_settings()


def test_settings_error_is_a_provider_settings_error() -> None:
    assert issubclass(SettingsError, ProviderSettingsError)
