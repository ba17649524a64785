"""
Shared utilities for the Paisa Buddy finance service.

This package contains code shared by the service and its tooling:
- provider_settings: Configuration for the pluggable LLM providers
- observability: Telemetry, logging, and privacy utilities
"""

from .provider_settings import (
    DEFAULT_OPENAI_API_BASE,
    DEFAULT_OPENAI_MODEL,
    SUPPORTED_PROVIDERS,
    OpenAIConfig,
    ProviderSettings,
    ProviderSettingsError,
    load_provider_settings,
)

__all__ = [
    "DEFAULT_OPENAI_API_BASE",
    "DEFAULT_OPENAI_MODEL",
    "SUPPORTED_PROVIDERS",
    "OpenAIConfig",
    "ProviderSettings",
    "ProviderSettingsError",
    "load_provider_settings",
]
