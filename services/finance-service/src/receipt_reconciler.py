"""
Turns loosely-typed receipt extractions into ledger drafts.

The reconciler is deliberately permissive: partial or malformed extractions
never raise. Each field falls back to a default and the user corrects the
stored record afterwards.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Tuple

from errors import ParseError
from expense_model import ExpenseCategory, ExpenseDraft, RawExtraction
from shared.observability.privacy import hash_payload

logger = logging.getLogger(__name__)

DEFAULT_AMOUNT = Decimal(0)
DEFAULT_CATEGORY = ExpenseCategory.MISCELLANEOUS.value
DEFAULT_DESCRIPTION = "Receipt scan"

_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*(.*?)\s*```$", re.DOTALL)


def reconcile(
    raw: RawExtraction | Mapping[str, Any] | None,
    *,
    today: Callable[[], date] = date.today,
) -> ExpenseDraft:
    """
    Build an ExpenseDraft from an extraction, defaulting each absent or malformed field.

    | field       | default             |
    |-------------|---------------------|
    | amount      | 0                   |
    | category    | "miscellaneous"     |
    | description | "Receipt scan"      |
    | date        | today               |

    Present values are used as-is: no positivity check on the amount and no
    enumeration check on the category happen here.
    """
    extraction = raw if isinstance(raw, RawExtraction) else RawExtraction.from_mapping(raw)
    return ExpenseDraft(
        amount=extraction.amount if extraction.amount is not None else DEFAULT_AMOUNT,
        category=extraction.category if extraction.category is not None else DEFAULT_CATEGORY,
        description=extraction.description if extraction.description is not None else DEFAULT_DESCRIPTION,
        date=extraction.date if extraction.date is not None else today(),
    )


def parse_extraction_text(text: str | None) -> Dict[str, Any]:
    """
    Decode the OCR completion into a JSON object.

    Markdown code fences around the JSON are tolerated. Raises ParseError when
    the text is empty, not JSON, or JSON that is not an object.
    """
    if not text or not text.strip():
        raise ParseError("Receipt extraction was empty")

    candidate = text.strip()
    fenced = _CODE_FENCE.match(candidate)
    if fenced:
        candidate = fenced.group(1)

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Receipt extraction is not valid JSON: {exc.msg}") from exc

    if not isinstance(parsed, dict):
        raise ParseError("Receipt extraction is not a JSON object")
    return parsed


def fallback_extraction(today: Callable[[], date] = date.today) -> Dict[str, Any]:
    """The permissive default record, in extraction shape."""
    return {
        "amount": 0,
        "description": DEFAULT_DESCRIPTION,
        "category": DEFAULT_CATEGORY,
        "date": today().isoformat(),
        "items": [],
    }


def extraction_or_fallback(
    text: str | None,
    *,
    today: Callable[[], date] = date.today,
) -> Tuple[Dict[str, Any], bool]:
    """
    Parse the completion, substituting the default record when it is unusable.

    Returns:
        (extraction payload, True when the fallback was used).
    """
    try:
        return parse_extraction_text(text), False
    except ParseError as exc:
        logger.warning(
            {
                "event": "receipt_extraction_fallback",
                "reason": str(exc),
                "raw_text_hash": hash_payload(text),
            }
        )
        return fallback_extraction(today), True
