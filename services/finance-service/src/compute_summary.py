from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

from expense_model import ExpenseRecord, json_number

HUNDRED = Decimal(100)


@dataclass(frozen=True)
class LedgerSummary:
    """Dashboard figures derived from one ledger snapshot."""

    total: Decimal
    budget: Decimal
    budget_remaining: Decimal
    budget_progress: Optional[Decimal]
    average_per_day: Decimal
    window_days: int
    transaction_count: int
    category_totals: Dict[str, Decimal] = field(default_factory=dict)
    category_shares: Dict[str, Decimal] = field(default_factory=dict)
    recent: List[ExpenseRecord] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        progress = self.budget_progress
        return {
            "total": json_number(self.total),
            "budget": json_number(self.budget),
            "budget_remaining": json_number(self.budget_remaining),
            "budget_progress": json_number(progress) if progress is not None else None,
            "budget_progress_percent": round_percentage(progress),
            "average_per_day": json_number(self.average_per_day),
            "window_days": self.window_days,
            "transaction_count": self.transaction_count,
            "category_totals": {key: json_number(value) for key, value in self.category_totals.items()},
            "category_shares": {key: json_number(value) for key, value in self.category_shares.items()},
            "recent": [record.to_payload() for record in self.recent],
        }


def compute_total(records: Iterable[ExpenseRecord]) -> Decimal:
    """
    Sum every record's amount.

    Returns:
        Decimal total; Decimal(0) for an empty ledger.
    """
    return sum((record.amount for record in records), Decimal(0))


def compute_category_totals(records: Iterable[ExpenseRecord]) -> Dict[str, Decimal]:
    """
    Group amounts by category value.

    Categories with no records are absent from the result rather than zero-valued.
    Key order follows first appearance in `records`.
    """
    totals: Dict[str, Decimal] = {}
    for record in records:
        key = record.category.value
        totals[key] = totals.get(key, Decimal(0)) + record.amount
    return totals


def compute_category_shares(category_totals: Dict[str, Decimal]) -> Dict[str, Decimal]:
    """
    Derive each category's fraction of total spend (the pie chart slices).

    Returns:
        Ratios that sum to 1 when the total is positive; empty dict when it is zero.
    """
    total = sum(category_totals.values(), Decimal(0))
    if total == 0:
        return {}
    return {category: amount / total for category, amount in category_totals.items()}


def compute_budget_progress(total: Decimal, budget: Decimal) -> Optional[Decimal]:
    """Percentage of the budget consumed; None when the budget is zero."""
    if budget == 0:
        return None
    return total / budget * HUNDRED


def compute_average_per_day(total: Decimal, window_days: int) -> Decimal:
    """
    Spend per day over a fixed window.

    The window is a caller-supplied constant, not the span between the oldest
    and newest record dates.
    """
    if window_days <= 0:
        raise ValueError(f"window_days must be positive (received {window_days})")
    return total / Decimal(window_days)


def round_percentage(progress: Optional[Decimal]) -> Optional[int]:
    if progress is None:
        return None
    return int(progress.quantize(Decimal(1), rounding=ROUND_HALF_UP))
