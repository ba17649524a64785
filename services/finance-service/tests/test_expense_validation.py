from datetime import date
from decimal import Decimal

import pytest

from errors import ValidationError
from expense_model import MAX_AMOUNT, ExpenseCategory
from expense_validation import (
    INVALID_AMOUNT_MESSAGE,
    INVALID_DATE_MESSAGE,
    MISSING_FIELDS_MESSAGE,
    parse_transactions,
    validate_expense_submission,
)


def form(**overrides):
    payload = {"amount": "120", "category": "food", "description": "Canteen thali", "date": "2024-03-08"}
    payload.update(overrides)
    return payload


def test_valid_submission_becomes_draft() -> None:
    draft = validate_expense_submission(form())

    assert draft.amount == Decimal("120")
    assert draft.category == "food"
    assert draft.description == "Canteen thali"
    assert draft.date == date(2024, 3, 8)


def test_blank_date_defaults_to_today(fixed_today: date) -> None:
    draft = validate_expense_submission(form(date=""), today=lambda: fixed_today)

    assert draft.date == fixed_today


@pytest.mark.parametrize("field", ["amount", "category", "description"])
def test_missing_required_field_is_rejected(field: str) -> None:
    with pytest.raises(ValidationError, match=MISSING_FIELDS_MESSAGE):
        validate_expense_submission(form(**{field: "  "}))


@pytest.mark.parametrize(
    "amount",
    ["abc", "0", "-5", "NaN", True, "1e5000", "1e999999999", "1e-400", "0.004"],
)
def test_invalid_amount_is_rejected(amount) -> None:
    with pytest.raises(ValidationError, match=INVALID_AMOUNT_MESSAGE):
        validate_expense_submission(form(amount=amount))


def test_malformed_date_is_rejected() -> None:
    with pytest.raises(ValidationError, match=INVALID_DATE_MESSAGE):
        validate_expense_submission(form(date="08/03/2024"))


def test_amount_is_rounded_to_paise() -> None:
    assert validate_expense_submission(form(amount="120.505")).amount == Decimal("120.51")
    assert validate_expense_submission(form(amount=0.1 + 0.2)).amount == Decimal("0.30")


def test_amount_ceiling_is_inclusive() -> None:
    assert validate_expense_submission(form(amount=str(MAX_AMOUNT))).amount == MAX_AMOUNT

    with pytest.raises(ValidationError, match=INVALID_AMOUNT_MESSAGE):
        validate_expense_submission(form(amount=str(MAX_AMOUNT + Decimal("0.01"))))


def test_parse_transactions_rebuilds_records() -> None:
    records = parse_transactions(
        [
            {"id": "a", "amount": 2500, "category": "education", "description": "Books", "date": "2024-03-09"},
            {"amount": "80", "category": "rickshaw", "description": "Auto", "date": "2024-03-08T09:00:00Z"},
        ]
    )

    assert [record.id for record in records] == ["a", "1"]
    assert records[0].amount == Decimal(2500)
    assert records[1].category is ExpenseCategory.MISCELLANEOUS
    assert records[1].date == date(2024, 3, 8)


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {"amount": 1},
        ["not an object"],
        [{"amount": "lots", "date": "2024-03-08"}],
        [{"amount": 10, "date": "yesterday"}],
        [{"amount": "1e5000", "date": "2024-03-08"}],
    ],
)
def test_parse_transactions_rejects_malformed_payloads(payload) -> None:
    with pytest.raises(ValidationError):
        parse_transactions(payload)
