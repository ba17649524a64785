from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping

PAISA = Decimal("0.01")
# Largest accepted amount or budget, in rupees.
MAX_AMOUNT = Decimal("1000000000")


class ExpenseCategory(str, Enum):
    FOOD = "food"
    TRANSPORT = "transport"
    EDUCATION = "education"
    ENTERTAINMENT = "entertainment"
    MISCELLANEOUS = "miscellaneous"

    @classmethod
    def coerce(cls, value: Any) -> "ExpenseCategory":
        """Map a free-form category onto the closed set; anything unrecognized is miscellaneous."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.MISCELLANEOUS

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]


CATEGORY_LABELS = {
    ExpenseCategory.FOOD: "Food & Chai",
    ExpenseCategory.TRANSPORT: "Transport",
    ExpenseCategory.EDUCATION: "Education",
    ExpenseCategory.ENTERTAINMENT: "Entertainment",
    ExpenseCategory.MISCELLANEOUS: "Miscellaneous",
}


@dataclass(frozen=True)
class ExpenseDraft:
    """An expense before the ledger assigns it an id."""

    amount: Decimal
    category: str
    description: str
    date: date


@dataclass(frozen=True)
class ExpenseRecord:
    id: str
    amount: Decimal
    category: ExpenseCategory
    description: str
    date: date

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict in the shape the browser and the LLM prompts use."""
        return {
            "id": self.id,
            "amount": json_number(self.amount),
            "category": self.category.value,
            "description": self.description,
            "date": self.date.isoformat(),
        }


@dataclass(frozen=True)
class ReceiptItem:
    name: str
    price: Decimal | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"name": self.name, "price": json_number(self.price) if self.price is not None else None}


@dataclass(frozen=True)
class RawExtraction:
    """
    What the OCR completion reported, field by field.

    Every field is optional. `from_mapping` keeps a value only when it has the
    expected type (numbers for amount, non-blank strings for text, ISO dates for
    date); anything missing or malformed is stored as None so the reconciler can
    apply its defaults.
    """

    amount: Decimal | None = None
    category: str | None = None
    description: str | None = None
    date: date | None = None
    items: tuple[ReceiptItem, ...] = ()

    @classmethod
    def from_mapping(cls, payload: Any) -> "RawExtraction":
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            amount=parse_amount(payload.get("amount")),
            category=_non_blank(payload.get("category")),
            description=_non_blank(payload.get("description")),
            date=parse_calendar_date(payload.get("date")),
            items=_parse_items(payload.get("items")),
        )


def parse_amount(value: Any) -> Decimal | None:
    """
    Convert ints, floats, Decimals, and numeric strings to a Decimal rounded to paise.

    Returns None for anything else, for NaN/infinity, and for magnitudes above
    MAX_AMOUNT. Sub-paisa values round to zero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            return None
        amount = Decimal(str(value))
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    if not amount.is_finite() or abs(amount) > MAX_AMOUNT:
        return None
    return amount.quantize(PAISA, rounding=ROUND_HALF_UP)


def parse_calendar_date(value: Any) -> date | None:
    """Accept date/datetime objects, `YYYY-MM-DD`, or an ISO timestamp (its date part)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def json_number(amount: Decimal) -> int | float:
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


def _non_blank(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _parse_items(value: Any) -> tuple[ReceiptItem, ...]:
    if not isinstance(value, list):
        return ()
    items = []
    for entry in value:
        if not isinstance(entry, Mapping):
            continue
        name = _non_blank(entry.get("name"))
        if name is None:
            continue
        items.append(ReceiptItem(name=name, price=parse_amount(entry.get("price"))))
    return tuple(items)
