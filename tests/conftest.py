"""Pytest configuration for root-level integration tests.

Adds the finance service src directory and the shared package to sys.path.
"""

import os
import sys
import tempfile
from pathlib import Path

SERVICES_ROOT = Path(__file__).resolve().parents[1] / "services"

SERVICE_PATHS = [
    SERVICES_ROOT,
    SERVICES_ROOT / "finance-service" / "src",
]

for path in SERVICE_PATHS:
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

os.environ.setdefault("ADVISOR_PROVIDER", "mock")
os.environ.setdefault("RECEIPT_PROVIDER", "mock")
os.environ.setdefault("AUTH_PROVIDER", "none")
os.environ.setdefault("FINANCE_DB_URL", f"sqlite:///{Path(tempfile.mkdtemp()) / 'finance_e2e.db'}")
