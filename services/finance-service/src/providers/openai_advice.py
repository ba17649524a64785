"""
OpenAI-backed advice provider.

Sends the kind-specific system/user prompt pair to the chat completions API
and returns the completion text untouched. Failures are not retried and are
not replaced by offline advice: they surface as AdviceGenerationError.
"""

from __future__ import annotations

import logging
from typing import Any

from openai import APIStatusError, OpenAI, OpenAIError

from advice_provider import AdviceProviderRequest, AdviceProviderResponse, build_prompts
from errors import AdviceGenerationError
from shared.observability.privacy import hash_payload

logger = logging.getLogger(__name__)

MISSING_API_KEY_MESSAGE = "OpenAI API key not configured"
MALFORMED_RESPONSE_MESSAGE = "OpenAI returned a malformed response"


def describe_openai_error(exc: OpenAIError) -> str:
    if isinstance(exc, APIStatusError):
        reason = exc.response.reason_phrase or str(exc.status_code)
        return f"OpenAI API error: {reason}"
    return f"OpenAI API error: {exc}"


def completion_text(completion: Any) -> str:
    """Pull choices[0].message.content out of a completion, or raise ValueError."""
    choices = getattr(completion, "choices", None)
    if not choices:
        raise ValueError("completion has no choices")
    content = getattr(getattr(choices[0], "message", None), "content", None)
    if not isinstance(content, str):
        raise ValueError("completion message has no text content")
    return content


class OpenAIAdviceProvider:
    """ChatGPT-backed provider for the three advice analyses."""

    name = "openai"

    def __init__(self, settings: Any | None = None):
        self._settings = settings
        openai_config = getattr(settings, "openai", None)
        if openai_config and openai_config.api_key:
            self._client = OpenAI(
                api_key=openai_config.api_key,
                base_url=openai_config.api_base,
                timeout=settings.timeout_seconds,
                max_retries=0,
            )
            self._model = openai_config.model
            self._temperature = settings.temperature
            self._max_tokens = settings.max_output_tokens
        else:
            self._client = None
            self._model = openai_config.model if openai_config else None
            self._temperature = 0.7
            self._max_tokens = 500

    def generate(self, request: AdviceProviderRequest) -> AdviceProviderResponse:
        if not self._client:
            raise AdviceGenerationError(MISSING_API_KEY_MESSAGE)

        system_prompt, user_prompt = build_prompts(request)
        logger.info(
            {
                "event": "openai_advice_request",
                "provider": self.name,
                "model": self._model,
                "analysis_type": request.kind.value,
                "transaction_count": len(request.transactions),
                "prompt_hash": hash_payload({"system": system_prompt, "user": user_prompt}),
            }
        )

        try:
            completion = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                max_tokens=self._max_tokens,
                temperature=self._temperature,
            )
        except OpenAIError as exc:
            logger.error(
                {
                    "event": "openai_advice_error",
                    "provider": self.name,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }
            )
            raise AdviceGenerationError(describe_openai_error(exc)) from exc

        try:
            text = completion_text(completion)
        except ValueError as exc:
            logger.error({"event": "openai_advice_malformed", "provider": self.name, "error_message": str(exc)})
            raise AdviceGenerationError(MALFORMED_RESPONSE_MESSAGE) from exc

        logger.info(
            {
                "event": "openai_advice_response",
                "provider": self.name,
                "analysis_type": request.kind.value,
                "response_hash": hash_payload(text),
            }
        )
        return AdviceProviderResponse(text=text, model=self._model)
