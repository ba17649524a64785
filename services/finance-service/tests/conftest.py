"""Pytest configuration for finance-service tests.

Ensures the service's own src directory and the shared package are importable,
and points the app at offline providers and a throwaway SQLite file before
`main` is imported anywhere.
"""

import os
import sys
import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

SERVICE_ROOT = Path(__file__).resolve().parents[1]
SERVICES_ROOT = SERVICE_ROOT.parent

SERVICE_SRC = SERVICE_ROOT / "src"
if str(SERVICE_SRC) not in sys.path:
    sys.path.insert(0, str(SERVICE_SRC))
if str(SERVICES_ROOT) not in sys.path:
    sys.path.insert(1, str(SERVICES_ROOT))

os.environ.setdefault("ADVISOR_PROVIDER", "mock")
os.environ.setdefault("RECEIPT_PROVIDER", "mock")
os.environ.setdefault("AUTH_PROVIDER", "none")
os.environ.setdefault("FINANCE_DB_URL", f"sqlite:///{Path(tempfile.mkdtemp()) / 'finance_test.db'}")

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def fixed_today() -> date:
    return date(2024, 3, 9)


@pytest.fixture
def sample_records():
    """Three stored expenses, newest first, as the dashboard scenario builds them."""
    from expense_model import ExpenseCategory, ExpenseRecord

    return [
        ExpenseRecord("rec-3", Decimal("2500"), ExpenseCategory.EDUCATION, "Semester books", date(2024, 3, 9)),
        ExpenseRecord("rec-2", Decimal("80"), ExpenseCategory.TRANSPORT, "Auto to campus", date(2024, 3, 8)),
        ExpenseRecord("rec-1", Decimal("120"), ExpenseCategory.FOOD, "Canteen thali", date(2024, 3, 8)),
    ]
