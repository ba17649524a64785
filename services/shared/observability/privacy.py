"""Keep raw ledger data, receipt images, and credentials out of log lines."""

import hashlib
import json
from collections.abc import Iterable, Mapping
from typing import Any

REDACTED = "[REDACTED]"


def _canonical_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    try:
        # Decimal amounts and dates serialize through str().
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    except (TypeError, ValueError):
        return repr(value).encode("utf-8")


def hash_payload(value: Any) -> str:
    """
    SHA-256 hex digest of `value`; equal payloads always hash the same.

    Mappings are hashed by content regardless of key order, so the digest can
    double as a de-duplication key for identical requests.
    """
    return hashlib.sha256(_canonical_bytes(value)).hexdigest()


def redact_fields(payload: Mapping[str, Any], allowed_keys: Iterable[str]) -> dict[str, Any]:
    keep = frozenset(allowed_keys)
    return {key: payload[key] if key in keep else REDACTED for key in payload}


def mask_secret(secret: str | None, visible: int = 4) -> str:
    """Show only the tail of a key; short keys are hidden entirely."""
    if not secret:
        return ""
    return REDACTED if len(secret) <= visible * 2 else "..." + secret[-visible:]
