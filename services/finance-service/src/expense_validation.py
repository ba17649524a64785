from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Callable, List, Mapping

from errors import ValidationError
from expense_model import ExpenseCategory, ExpenseDraft, ExpenseRecord, parse_amount, parse_calendar_date

REQUIRED_FIELDS = ("amount", "category", "description")
MISSING_FIELDS_MESSAGE = "Please fill in all required fields!"
INVALID_AMOUNT_MESSAGE = "Please enter a valid amount!"
INVALID_DATE_MESSAGE = "Please enter a valid date!"
INVALID_TRANSACTIONS_MESSAGE = "Transactions must be a list of expense records"


def validate_expense_submission(
    payload: Mapping[str, Any],
    *,
    today: Callable[[], date] = date.today,
) -> ExpenseDraft:
    """
    Turn an add-expense form submission into an ExpenseDraft.

    Raises ValidationError for missing required fields, a non-numeric or
    non-positive amount, or an unparseable date. A blank date defaults to today.
    The category is passed through; the ledger folds unknown values.
    """
    if any(_is_blank(payload.get(field)) for field in REQUIRED_FIELDS):
        raise ValidationError(MISSING_FIELDS_MESSAGE)

    amount = parse_amount(payload.get("amount"))
    if amount is None or amount <= Decimal(0):
        raise ValidationError(INVALID_AMOUNT_MESSAGE)

    raw_date = payload.get("date")
    if _is_blank(raw_date):
        expense_date = today()
    else:
        expense_date = parse_calendar_date(raw_date)
        if expense_date is None:
            raise ValidationError(INVALID_DATE_MESSAGE)

    return ExpenseDraft(
        amount=amount,
        category=str(payload["category"]).strip(),
        description=str(payload["description"]).strip(),
        date=expense_date,
    )


def parse_transactions(payload: Any) -> List[ExpenseRecord]:
    """
    Rebuild ledger records sent back by the browser (newest first, as displayed).

    Each entry needs a numeric amount and a parseable date; unknown categories
    fold to miscellaneous and a missing id is replaced by the entry's position.
    """
    if not isinstance(payload, list):
        raise ValidationError(INVALID_TRANSACTIONS_MESSAGE)

    records = []
    for index, entry in enumerate(payload):
        if not isinstance(entry, Mapping):
            raise ValidationError(f"Transaction {index} is not an object")
        amount = parse_amount(entry.get("amount"))
        if amount is None:
            raise ValidationError(f"Transaction {index} has an invalid amount")
        expense_date = parse_calendar_date(entry.get("date"))
        if expense_date is None:
            raise ValidationError(f"Transaction {index} has an invalid date")
        records.append(
            ExpenseRecord(
                id=str(entry.get("id") or index),
                amount=amount,
                category=ExpenseCategory.coerce(entry.get("category")),
                description=str(entry.get("description") or ""),
                date=expense_date,
            )
        )
    return records


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False
