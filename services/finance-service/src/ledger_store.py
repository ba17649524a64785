from __future__ import annotations

"""
In-memory expense ledger and the per-session registry that owns ledgers.

A ledger is an insertion-ordered, append-only list of ExpenseRecord kept
newest-first. Reads and appends go through one lock per ledger so that several
browser tabs writing to the same session are serialized.
"""

import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import uuid4

from compute_summary import (
    LedgerSummary,
    compute_average_per_day,
    compute_budget_progress,
    compute_category_shares,
    compute_category_totals,
    compute_total,
)
from expense_model import ExpenseCategory, ExpenseDraft, ExpenseRecord

logger = logging.getLogger(__name__)

DEFAULT_AVERAGE_WINDOW_DAYS = 15
RECENT_EXPENSE_COUNT = 5


def _new_expense_id() -> str:
    return str(uuid4())


class LedgerStore:
    """Ordered expense records for one user session plus the aggregates derived from them."""

    def __init__(
        self,
        records: Iterable[ExpenseRecord] | None = None,
        *,
        id_factory: Callable[[], str] = _new_expense_id,
    ) -> None:
        self._records: List[ExpenseRecord] = list(records or [])
        self._ids = {record.id for record in self._records}
        if len(self._ids) != len(self._records):
            raise ValueError("ledger records must have unique ids")
        self._id_factory = id_factory
        self._lock = threading.Lock()

    def append(self, draft: ExpenseDraft) -> ExpenseRecord:
        """
        Store `draft` at the head of the ledger under a fresh id.

        Amount and description are taken as given; the caller validates them.
        The category is folded onto the closed enumeration.
        """
        with self._lock:
            expense_id = self._id_factory()
            while expense_id in self._ids:
                expense_id = self._id_factory()

            record = ExpenseRecord(
                id=expense_id,
                amount=draft.amount,
                category=ExpenseCategory.coerce(draft.category),
                description=draft.description,
                date=draft.date,
            )
            self._records.insert(0, record)
            self._ids.add(expense_id)

        logger.debug(
            {
                "event": "ledger_append",
                "expense_id": record.id,
                "category": record.category.value,
                "ledger_size": len(self._records),
            }
        )
        return record

    def records(self) -> List[ExpenseRecord]:
        """Newest-first copy of the ledger."""
        with self._lock:
            return list(self._records)

    def recent(self, limit: int = RECENT_EXPENSE_COUNT) -> List[ExpenseRecord]:
        with self._lock:
            return self._records[: max(0, limit)]

    def __len__(self) -> int:
        return len(self._records)

    def total(self) -> Decimal:
        return compute_total(self.records())

    def totals_by_category(self) -> Dict[str, Decimal]:
        return compute_category_totals(self.records())

    def budget_progress(self, budget: Decimal) -> Optional[Decimal]:
        """total / budget * 100, or None when the budget is zero."""
        return compute_budget_progress(self.total(), Decimal(budget))

    def average_per_day(self, window_days: int = DEFAULT_AVERAGE_WINDOW_DAYS) -> Decimal:
        """total / window_days over a fixed window; see compute_average_per_day."""
        return compute_average_per_day(self.total(), window_days)

    def summarize(
        self,
        budget: Decimal,
        *,
        window_days: int = DEFAULT_AVERAGE_WINDOW_DAYS,
        recent_limit: int = RECENT_EXPENSE_COUNT,
    ) -> LedgerSummary:
        """Compute every dashboard figure from a single consistent snapshot."""
        snapshot = self.records()
        budget = Decimal(budget)
        total = compute_total(snapshot)
        category_totals = compute_category_totals(snapshot)
        return LedgerSummary(
            total=total,
            budget=budget,
            budget_remaining=budget - total,
            budget_progress=compute_budget_progress(total, budget),
            average_per_day=compute_average_per_day(total, window_days),
            window_days=window_days,
            transaction_count=len(snapshot),
            category_totals=category_totals,
            category_shares=compute_category_shares(category_totals),
            recent=snapshot[: max(0, recent_limit)],
        )


@dataclass
class LedgerSession:
    session_id: str
    ledger: LedgerStore
    advisor: Any


class SessionRegistry:
    """
    Keeps one LedgerSession per session id.

    `advisor_factory` builds the per-session advice requester so that the most
    recent advice per analysis kind is scoped to the session that asked for it.
    """

    def __init__(self, advisor_factory: Callable[[], Any]) -> None:
        self._advisor_factory = advisor_factory
        self._sessions: Dict[str, LedgerSession] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> LedgerSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> LedgerSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = LedgerSession(
                    session_id=session_id,
                    ledger=LedgerStore(),
                    advisor=self._advisor_factory(),
                )
                self._sessions[session_id] = session
                logger.info({"event": "ledger_session_created", "session_id": session_id})
            return session

    def reset(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)
