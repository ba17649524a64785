from __future__ import annotations

"""
Provider abstraction for free-text financial advice.

Providers receive an analysis kind, an already-truncated transaction snapshot,
and the monthly budget, and return the completion text verbatim. The three
prompt templates live here so the OpenAI adapter and the tests share them.
"""

import json
import logging
import os
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from compute_summary import (
    compute_budget_progress,
    compute_category_shares,
    compute_category_totals,
    compute_total,
    round_percentage,
)
from errors import AdviceGenerationError, ValidationError
from expense_model import ExpenseCategory, ExpenseRecord, json_number
from shared.observability.privacy import hash_payload

logger = logging.getLogger(__name__)

INVALID_ANALYSIS_TYPE_MESSAGE = "Invalid analysis type"


class AnalysisKind(str, Enum):
    SPENDING_ADVICE = "spending_advice"
    BUDGET_RECOMMENDATION = "budget_recommendation"
    PATTERN_ANALYSIS = "pattern_analysis"

    @classmethod
    def parse(cls, value: Any) -> "AnalysisKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as exc:
            raise ValidationError(INVALID_ANALYSIS_TYPE_MESSAGE) from exc

    @property
    def display_title(self) -> str:
        return ANALYSIS_TITLES[self]


ANALYSIS_TITLES = {
    AnalysisKind.SPENDING_ADVICE: "Smart Spending Advice",
    AnalysisKind.BUDGET_RECOMMENDATION: "Budget Recommendations",
    AnalysisKind.PATTERN_ANALYSIS: "Spending Pattern Analysis",
}

SYSTEM_PROMPTS = {
    AnalysisKind.SPENDING_ADVICE: (
        "You are a personal finance advisor for Indian students. Provide practical, culturally relevant "
        "advice for managing student expenses. Focus on local context like college canteens, "
        "auto-rickshaws, and typical student budgets in INR."
    ),
    AnalysisKind.BUDGET_RECOMMENDATION: (
        "You are a financial planning expert for Indian students. Suggest realistic budget allocations "
        "based on spending patterns."
    ),
    AnalysisKind.PATTERN_ANALYSIS: (
        "You are a data analyst specializing in spending behavior. Identify trends and patterns in "
        "financial data."
    ),
}

USER_PROMPT_TEMPLATES = {
    AnalysisKind.SPENDING_ADVICE: """Based on these spending patterns, provide personalized advice (max 150 words):
Transactions: {transactions}
Budget: ₹{budget}

Give specific, actionable advice for this student.""",
    AnalysisKind.BUDGET_RECOMMENDATION: """Analyze these transactions and suggest an optimal monthly budget breakdown:
Transactions: {transactions}
Current Budget: ₹{budget}

Provide category-wise budget recommendations in a structured format.""",
    AnalysisKind.PATTERN_ANALYSIS: """Analyze spending patterns and identify insights:
Transactions: {transactions}

Identify trends, peak spending days, category insights, and potential areas for improvement.""",
}


@dataclass(slots=True)
class AdviceProviderRequest:
    """
    Contract for advice generation inputs.

    Attributes:
        kind: Which of the three analyses to produce.
        transactions: Newest-first snapshot, already cut to the outbound limit.
        budget: Monthly budget ceiling in rupees.
        context: Optional metadata (request id, full ledger size) for logging.
    """

    kind: AnalysisKind
    transactions: List[ExpenseRecord]
    budget: Decimal
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class AdviceProviderResponse:
    text: str
    model: Optional[str] = None


@runtime_checkable
class AdviceProvider(Protocol):
    """Interface for swappable advice generators."""

    name: str

    def generate(self, request: AdviceProviderRequest) -> AdviceProviderResponse:
        """Return the advice text for the request."""
        ...


def build_prompts(request: AdviceProviderRequest) -> Tuple[str, str]:
    """Return the (system, user) message pair for the request's analysis kind."""
    transactions = json.dumps([record.to_payload() for record in request.transactions], ensure_ascii=False)
    user_prompt = USER_PROMPT_TEMPLATES[request.kind].format(
        transactions=transactions,
        budget=json_number(request.budget),
    )
    return SYSTEM_PROMPTS[request.kind], user_prompt


class DeterministicAdviceProvider:
    """
    Offline provider that writes rule-based advice from the ledger aggregates.

    Useful when no OpenAI key is available; the wording is fixed but the figures
    come from the same snapshot an LLM would see.
    """

    name = "deterministic"

    def generate(self, request: AdviceProviderRequest) -> AdviceProviderResponse:
        if request.kind is AnalysisKind.SPENDING_ADVICE:
            text = _spending_advice(request.transactions, request.budget)
        elif request.kind is AnalysisKind.BUDGET_RECOMMENDATION:
            text = _budget_recommendation(request.transactions, request.budget)
        else:
            text = _pattern_analysis(request.transactions)
        _log_advice_metrics(self.name, request, text)
        return AdviceProviderResponse(text=text)


class MockAdviceProvider:
    """Fixture-driven provider suitable for tests or offline demos."""

    name = "mock"

    def __init__(self, fixture_path: str | Path | None = None):
        candidate = fixture_path or os.getenv("ADVISOR_PROVIDER_FIXTURE") or _default_fixture_path()
        self._fixture_path = Path(candidate)
        if not self._fixture_path.exists():
            raise FileNotFoundError(f"Mock advice provider fixture not found at {self._fixture_path}")

    def generate(self, request: AdviceProviderRequest) -> AdviceProviderResponse:
        try:
            payload = json.loads(self._fixture_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise AdviceGenerationError(
                f"Mock advice provider fixture is not valid JSON: {self._fixture_path}"
            ) from exc

        text = payload.get(request.kind.value)
        if not isinstance(text, str):
            raise AdviceGenerationError(f"Mock advice fixture has no entry for '{request.kind.value}'")
        _log_advice_metrics(self.name, request, text)
        return AdviceProviderResponse(text=text, model="mock")


def build_advice_provider(name: str | None, *, settings: Optional[Any] = None) -> AdviceProvider:
    """Factory that instantiates the requested advice provider implementation."""

    normalized = (name or "").strip().lower()
    if normalized == "deterministic":
        return DeterministicAdviceProvider()
    if normalized == "mock":
        return MockAdviceProvider()
    if normalized in ("", "openai"):
        from providers.openai_advice import OpenAIAdviceProvider

        return OpenAIAdviceProvider(settings=settings)

    raise ValueError(f"Unsupported advice provider '{name}'")


def _default_fixture_path() -> Path:
    service_root = Path(__file__).resolve().parents[1]
    return service_root / "tests" / "fixtures" / "mock_advice_provider.json"


def _log_advice_metrics(provider_name: str, request: AdviceProviderRequest, text: str) -> None:
    logger.info(
        {
            "event": "advice_provider_output",
            "provider": provider_name,
            "analysis_type": request.kind.value,
            "transaction_count": len(request.transactions),
            "advice_length": len(text),
            "advice_hash": hash_payload(text),
        }
    )


CATEGORY_TIPS = {
    ExpenseCategory.FOOD: "Carry a tiffin or stick to the college canteen's thali a few days a week; chai and snack runs add up quickly.",
    ExpenseCategory.TRANSPORT: "Compare a monthly bus or metro pass against daily auto-rickshaw fares, and share autos with classmates on common routes.",
    ExpenseCategory.EDUCATION: "Check the library, seniors, and second-hand book markets before buying new textbooks.",
    ExpenseCategory.ENTERTAINMENT: "Use student discounts and weekday movie shows, and set a fixed monthly amount for outings.",
    ExpenseCategory.MISCELLANEOUS: "Split miscellaneous spends into real categories so you can see where the money goes.",
}

SAVINGS_BUFFER_SHARE = Decimal("0.10")


def format_rupees(amount: Decimal) -> str:
    """Whole-rupee amount with Indian digit grouping (1,50,000)."""
    rounded = int(Decimal(amount).quantize(Decimal(1)))
    sign = "-" if rounded < 0 else ""
    digits = str(abs(rounded))
    if len(digits) <= 3:
        return f"₹{sign}{digits}"
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return f"₹{sign}{','.join(groups)},{tail}"


def _ranked_categories(records: List[ExpenseRecord]) -> List[Tuple[str, Decimal]]:
    totals = compute_category_totals(records)
    return sorted(totals.items(), key=lambda item: item[1], reverse=True)


def _spending_advice(records: List[ExpenseRecord], budget: Decimal) -> str:
    total = compute_total(records)
    progress = round_percentage(compute_budget_progress(total, budget))
    ranked = _ranked_categories(records)
    top_category, top_amount = ranked[0]

    lines = [f"You have spent {format_rupees(total)} across {len(records)} recent transactions."]
    if progress is not None:
        lines.append(f"That is {progress}% of your {format_rupees(budget)} monthly budget.")
        if progress > 80:
            lines.append("You are close to the limit, so pause non-essential purchases until next month.")
        elif progress > 60:
            lines.append("Keep an eye on discretionary spends for the rest of the month.")
        else:
            lines.append("You are on track; move part of the remaining budget into savings now.")
    lines.append(
        f"Your biggest category is {ExpenseCategory.coerce(top_category).label} at {format_rupees(top_amount)}. "
        + CATEGORY_TIPS[ExpenseCategory.coerce(top_category)]
    )
    return "\n".join(lines)


def _budget_recommendation(records: List[ExpenseRecord], budget: Decimal) -> str:
    shares = compute_category_shares(compute_category_totals(records))
    spendable = budget * (1 - SAVINGS_BUFFER_SHARE)

    lines = [f"Suggested monthly budget for {format_rupees(budget)}:"]
    for category, share in sorted(shares.items(), key=lambda item: item[1], reverse=True):
        label = ExpenseCategory.coerce(category).label
        lines.append(f"- {label}: {format_rupees(spendable * share)} ({round_percentage(share * 100)}%)")
    lines.append(f"- Savings buffer: {format_rupees(budget * SAVINGS_BUFFER_SHARE)} (10%)")
    lines.append("Allocations follow your current spending mix with 10% set aside first.")
    return "\n".join(lines)


def _pattern_analysis(records: List[ExpenseRecord]) -> str:
    total = compute_total(records)
    by_day: Dict[str, Decimal] = defaultdict(Decimal)
    weekend_total = Decimal(0)
    for record in records:
        by_day[record.date.isoformat()] += record.amount
        if record.date.weekday() >= 5:
            weekend_total += record.amount

    peak_day, peak_amount = max(by_day.items(), key=lambda item: item[1])
    ranked = _ranked_categories(records)
    top_category, top_amount = ranked[0]
    average = total / len(records)

    lines = [
        f"Peak spending day: {peak_day} with {format_rupees(peak_amount)}.",
        f"Average transaction: {format_rupees(average)} over {len(records)} transactions.",
        f"{ExpenseCategory.coerce(top_category).label} leads with {format_rupees(top_amount)}"
        + (f" ({round_percentage(top_amount / total * 100)}% of spend)." if total else "."),
    ]
    if total:
        lines.append(f"Weekend spending is {round_percentage(weekend_total / total * 100)}% of the total.")
    lines.append(CATEGORY_TIPS[ExpenseCategory.coerce(top_category)])
    return "\n".join(lines)
