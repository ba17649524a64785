"""
Environment-driven configuration for the advice and receipt LLM providers.

Both flows pick a backend (`openai`, `mock` or `deterministic`) and tune the
outbound call through their own set of variables, e.g. `ADVISOR_PROVIDER`,
`ADVISOR_PROVIDER_TIMEOUT_SECONDS`. OpenAI credentials are shared between them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

SUPPORTED_PROVIDERS = frozenset({"deterministic", "mock", "openai"})
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_OPENAI_API_BASE = "https://api.openai.com/v1"

N = TypeVar("N", int, float)


class ProviderSettingsError(RuntimeError):
    """A provider-related environment variable holds an unusable value."""


@dataclass(frozen=True, slots=True)
class OpenAIConfig:
    api_key: Optional[str]
    model: str
    api_base: str

    @classmethod
    def from_env(cls) -> "OpenAIConfig":
        return cls(
            api_key=_env("OPENAI_API_KEY"),
            model=_env("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
            api_base=_env("OPENAI_API_BASE") or DEFAULT_OPENAI_API_BASE,
        )


@dataclass(frozen=True, slots=True)
class ProviderSettings:
    provider_name: str
    timeout_seconds: float
    temperature: float
    max_output_tokens: int
    openai: Optional[OpenAIConfig] = None


def load_provider_settings(
    *,
    provider_env: str,
    timeout_env: str,
    temperature_env: str,
    max_tokens_env: str,
    default_provider: str = "openai",
    default_timeout: float = 30.0,
    default_temperature: float = 0.7,
    default_max_tokens: int = 500,
) -> ProviderSettings:
    """
    Read one provider stack's settings from the environment.

    A missing `OPENAI_API_KEY` is not an error here; the OpenAI adapters report
    it on first use, so the ledger endpoints keep working without credentials.
    """
    provider_name = (_env(provider_env) or default_provider).lower()
    if provider_name not in SUPPORTED_PROVIDERS:
        raise ProviderSettingsError(
            f"Unsupported provider '{provider_name}' in {provider_env}; expected one of {sorted(SUPPORTED_PROVIDERS)}"
        )

    timeout_seconds = parse_float(os.getenv(timeout_env), default_timeout, timeout_env)
    if timeout_seconds <= 0:
        raise ProviderSettingsError(f"{timeout_env} must be positive (received '{timeout_seconds}')")

    return ProviderSettings(
        provider_name=provider_name,
        timeout_seconds=timeout_seconds,
        temperature=parse_float(os.getenv(temperature_env), default_temperature, temperature_env),
        max_output_tokens=parse_int(os.getenv(max_tokens_env), default_max_tokens, max_tokens_env),
        openai=OpenAIConfig.from_env() if provider_name == "openai" else None,
    )


def parse_float(raw_value: Optional[str], default: float, env_key: str) -> float:
    return _coerce(raw_value, default, env_key, float, "numeric")


def parse_int(raw_value: Optional[str], default: int, env_key: str) -> int:
    return _coerce(raw_value, default, env_key, int, "an integer")


def _coerce(raw_value: Optional[str], default: N, env_key: str, cast: Callable[[str], N], expected: str) -> N:
    text = (raw_value or "").strip()
    if not text:
        return default
    try:
        return cast(text)
    except ValueError as exc:
        raise ProviderSettingsError(f"{env_key} must be {expected} (received '{raw_value}')") from exc


def _env(key: str) -> Optional[str]:
    return (os.getenv(key) or "").strip() or None
