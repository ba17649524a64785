"""
OpenAI vision provider for receipt OCR.

The image travels as a `data:` URI inside an `image_url` content part; the
system prompt asks for a JSON object with amount, description, category, date,
and line items. The completion text is returned as-is for the scanner to decode.
"""

from __future__ import annotations

import logging
from typing import Any

from openai import OpenAI, OpenAIError

from errors import ReceiptExtractionError
from providers.openai_advice import (
    MALFORMED_RESPONSE_MESSAGE,
    MISSING_API_KEY_MESSAGE,
    completion_text,
    describe_openai_error,
)
from receipt_provider import ReceiptProviderRequest, ReceiptProviderResponse
from shared.observability.privacy import hash_payload

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an OCR system specialized in extracting transaction data from receipts and bills.
Extract the following information and return it as a JSON object:
{
  "amount": number (total amount),
  "description": string (merchant name or item description),
  "category": string (one of: food, transport, education, entertainment, miscellaneous),
  "date": string (ISO date format, use current date if not found),
  "items": array of {name: string, price: number} (individual items if available)
}

Be accurate with amounts and dates. If you can't find specific information, make reasonable assumptions based on context."""

USER_INSTRUCTION = "Extract transaction data from this receipt:"


def build_messages(request: ReceiptProviderRequest) -> list[dict[str, Any]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": USER_INSTRUCTION},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{request.media_type};base64,{request.image_base64}"},
                },
            ],
        },
    ]


class OpenAIReceiptProvider:
    name = "openai"

    def __init__(self, settings: Any | None = None):
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
            self._temperature = 0.1
            self._max_tokens = 500

    def extract(self, request: ReceiptProviderRequest) -> ReceiptProviderResponse:
        if not self._client:
            raise ReceiptExtractionError(MISSING_API_KEY_MESSAGE)

        logger.info({"event": "openai_receipt_request", "provider": self.name, "model": self._model})
        try:
            completion = self._client.chat.completions.create(
                model=self._model,
                messages=build_messages(request),
                max_tokens=self._max_tokens,
                temperature=self._temperature,
            )
        except OpenAIError as exc:
            logger.error(
                {
                    "event": "openai_receipt_error",
                    "provider": self.name,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }
            )
            raise ReceiptExtractionError(describe_openai_error(exc)) from exc

        try:
            text = completion_text(completion)
        except ValueError as exc:
            raise ReceiptExtractionError(MALFORMED_RESPONSE_MESSAGE) from exc

        logger.info({"event": "openai_receipt_response", "provider": self.name, "response_hash": hash_payload(text)})
        return ReceiptProviderResponse(text=text, model=self._model)
