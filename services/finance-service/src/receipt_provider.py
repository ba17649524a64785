from __future__ import annotations

"""
Provider abstraction for receipt OCR plus the scan pipeline built on it.

A receipt provider turns a base64 image into completion text. `ReceiptScanner`
validates the image, makes exactly one provider call, and decodes the text into
an extraction payload, substituting the default record when the text is not a
JSON object.
"""

import base64
import binascii
import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

from errors import ReceiptExtractionError, ValidationError
from expense_model import RawExtraction
from receipt_reconciler import extraction_or_fallback
from shared.observability.privacy import hash_payload, redact_fields

logger = logging.getLogger(__name__)

NO_IMAGE_MESSAGE = "No image data provided"
INVALID_IMAGE_MESSAGE = "Image data is not valid base64"
IMAGE_TOO_LARGE_MESSAGE = "Receipt image must be 10 MB or smaller"
MAX_IMAGE_BYTES = 10 * 1024 * 1024
LOGGABLE_EXTRACTION_KEYS = frozenset({"category", "date"})

_DATA_URI_PREFIX = re.compile(r"^data:[^;,]*;base64,", re.IGNORECASE)


@dataclass(slots=True)
class ReceiptProviderRequest:
    image_base64: str
    media_type: str = "image/jpeg"
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ReceiptProviderResponse:
    text: str
    model: Optional[str] = None


@runtime_checkable
class ReceiptProvider(Protocol):
    """Interface for swappable receipt OCR backends."""

    name: str

    def extract(self, request: ReceiptProviderRequest) -> ReceiptProviderResponse:
        """Return the raw completion text describing the receipt."""
        ...


class MockReceiptProvider:
    """
    Fixture-driven provider for tests or offline demos.

    The fixture's `completion` entry is returned as the completion text; a JSON
    object there is serialized first.
    """

    name = "mock"

    def __init__(self, fixture_path: str | Path | None = None):
        candidate = fixture_path or os.getenv("RECEIPT_PROVIDER_FIXTURE") or _default_fixture_path()
        self._fixture_path = Path(candidate)
        if not self._fixture_path.exists():
            raise FileNotFoundError(f"Mock receipt provider fixture not found at {self._fixture_path}")

    def extract(self, request: ReceiptProviderRequest) -> ReceiptProviderResponse:
        try:
            payload = json.loads(self._fixture_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ReceiptExtractionError(
                f"Mock receipt provider fixture is not valid JSON: {self._fixture_path}"
            ) from exc

        completion = payload.get("completion")
        if not isinstance(completion, str):
            completion = json.dumps(completion)
        return ReceiptProviderResponse(text=completion, model="mock")


def build_receipt_provider(name: str | None, *, settings: Optional[Any] = None) -> ReceiptProvider:
    """Factory that instantiates the requested receipt provider implementation."""

    normalized = (name or "").strip().lower()
    if normalized == "mock":
        return MockReceiptProvider()
    if normalized in ("", "openai"):
        from providers.openai_receipt import OpenAIReceiptProvider

        return OpenAIReceiptProvider(settings=settings)

    raise ValueError(f"Unsupported receipt provider '{name}'")


def _default_fixture_path() -> Path:
    service_root = Path(__file__).resolve().parents[1]
    return service_root / "tests" / "fixtures" / "mock_receipt_provider.json"


@dataclass(frozen=True)
class ReceiptScan:
    """
    Outcome of one receipt scan.

    Attributes:
        data: Extraction payload as decoded from the completion (or the default record).
        raw_text: The completion text exactly as the provider returned it.
        extraction: `data` normalized into typed optional fields.
        used_fallback: True when the completion could not be decoded.
    """

    data: Dict[str, Any]
    raw_text: str
    extraction: RawExtraction
    used_fallback: bool = False


class ReceiptScanner:
    def __init__(self, provider: ReceiptProvider, *, today: Callable[[], date] = date.today) -> None:
        self._provider = provider
        self._today = today

    @property
    def provider(self) -> ReceiptProvider:
        return self._provider

    def scan(self, image_base64: str | None, *, context: Dict[str, Any] | None = None) -> ReceiptScan:
        """
        Run one OCR request and decode its result.

        Raises:
            ValidationError: no image data, invalid base64, or an image over MAX_IMAGE_BYTES.
            ReceiptExtractionError: the provider call failed.
        """
        image = _validated_image(image_base64)

        logger.info(
            {
                "event": "receipt_scan_started",
                "provider": self._provider.name,
                "image_hash": hash_payload(image),
                "image_length": len(image),
            }
        )
        response = self._provider.extract(ReceiptProviderRequest(image_base64=image, context=dict(context or {})))
        data, used_fallback = extraction_or_fallback(response.text, today=self._today)

        logger.info(
            {
                "event": "receipt_scan_completed",
                "provider": self._provider.name,
                "used_fallback": used_fallback,
                "extraction": redact_fields(data, LOGGABLE_EXTRACTION_KEYS),
            }
        )
        return ReceiptScan(
            data=data,
            raw_text=response.text,
            extraction=RawExtraction.from_mapping(data),
            used_fallback=used_fallback,
        )


def _strip_data_uri(image: str) -> str:
    return _DATA_URI_PREFIX.sub("", image.strip(), count=1)


def _validated_image(image_base64: str | None) -> str:
    image = "".join(_strip_data_uri(image_base64 or "").split())
    if not image:
        raise ValidationError(NO_IMAGE_MESSAGE)
    # Size is checked on the encoded text so oversized uploads are never decoded.
    if len(image) > 4 * -(-MAX_IMAGE_BYTES // 3):
        raise ValidationError(IMAGE_TOO_LARGE_MESSAGE)
    try:
        base64.b64decode(image, validate=True)
    except binascii.Error as exc:
        raise ValidationError(INVALID_IMAGE_MESSAGE) from exc
    return image
