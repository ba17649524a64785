from __future__ import annotations

"""
Packages ledger snapshots into advice requests and tracks the latest result per kind.

Each call validates its inputs, cuts the snapshot to the outbound transaction
limit, and makes exactly one provider call. Identical concurrent calls (same
kind, same truncated snapshot, same budget) share a single provider call.
"""

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Tuple, TypeVar

from advice_provider import AdviceProvider, AdviceProviderRequest, AnalysisKind
from errors import NoDataError, ValidationError
from expense_model import ExpenseRecord, parse_amount
from shared.observability.privacy import hash_payload

logger = logging.getLogger(__name__)

DEFAULT_TRANSACTION_LIMIT = 20
NO_DATA_MESSAGE = "Add some transactions first to get AI insights"
INVALID_BUDGET_MESSAGE = "Budget must be a number"

T = TypeVar("T")


class AdviceState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class AdviceResult:
    kind: AnalysisKind
    text: str
    transaction_count: int
    budget: Decimal
    generated_at: datetime


@dataclass(frozen=True)
class AdviceStatus:
    kind: AnalysisKind
    state: AdviceState
    result: Optional[AdviceResult] = None
    error: Optional[str] = None


class _Flight:
    __slots__ = ("future", "followers")

    def __init__(self) -> None:
        self.future: Future = Future()
        self.followers = 0


class SingleFlight:
    """
    Collapses concurrent calls that share a key into one execution.

    The first caller for a key runs the function; callers arriving while it is
    in flight wait for and receive the same result or exception. Once the call
    settles the key is forgotten, so later calls run again.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._flights: Dict[Hashable, _Flight] = {}

    def do(self, key: Hashable, fn: Callable[[], T]) -> Tuple[T, bool]:
        """Return (result, shared) where shared is True for callers that joined an in-flight call."""
        with self._lock:
            flight = self._flights.get(key)
            leader = flight is None
            if leader:
                flight = _Flight()
                self._flights[key] = flight
            else:
                flight.followers += 1

        if not leader:
            return flight.future.result(), True

        try:
            result = fn()
        except BaseException as exc:
            flight.future.set_exception(exc)
            raise
        else:
            flight.future.set_result(result)
            return result, False
        finally:
            with self._lock:
                self._flights.pop(key, None)

    def followers(self, key: Hashable) -> int:
        with self._lock:
            flight = self._flights.get(key)
            return flight.followers if flight else 0

    def in_flight(self) -> int:
        with self._lock:
            return len(self._flights)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdviceRequester:
    """
    Requests advice for one analysis kind at a time and keeps the most recent text per kind.

    A new successful result supersedes the previous one for that kind; a failed
    request leaves the previous result in place and records the error.
    """

    def __init__(
        self,
        provider: AdviceProvider,
        *,
        transaction_limit: int = DEFAULT_TRANSACTION_LIMIT,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if transaction_limit <= 0:
            raise ValueError("transaction_limit must be positive")
        self._provider = provider
        self._transaction_limit = transaction_limit
        self._clock = clock
        self._flights = SingleFlight()
        self._lock = threading.Lock()
        self._states: Dict[AnalysisKind, AdviceState] = {}
        self._results: Dict[AnalysisKind, AdviceResult] = {}
        self._errors: Dict[AnalysisKind, str] = {}

    def request_advice(
        self,
        kind: AnalysisKind | str,
        ledger_snapshot: Iterable[ExpenseRecord],
        budget: Any,
        *,
        context: Dict[str, Any] | None = None,
    ) -> str:
        """
        Produce advice text for `kind` over the newest records of `ledger_snapshot`.

        Raises:
            ValidationError: unknown analysis kind or non-numeric budget.
            NoDataError: the snapshot is empty; no provider call is made.
            AdviceGenerationError: the provider call failed.
        """
        analysis_kind = AnalysisKind.parse(kind)
        snapshot = list(ledger_snapshot)
        if not snapshot:
            raise NoDataError(NO_DATA_MESSAGE)

        budget_amount = parse_amount(budget)
        if budget_amount is None:
            raise ValidationError(INVALID_BUDGET_MESSAGE)

        outbound = snapshot[: self._transaction_limit]
        flight_key = self.flight_key(analysis_kind, outbound, budget_amount)
        request = AdviceProviderRequest(
            kind=analysis_kind,
            transactions=outbound,
            budget=budget_amount,
            context={"ledger_size": len(snapshot), **(context or {})},
        )

        self._set_state(analysis_kind, AdviceState.REQUESTING)
        try:
            text, shared = self._flights.do(flight_key, lambda: self._provider.generate(request).text)
        except Exception as exc:
            self._record_failure(analysis_kind, str(exc))
            raise

        self._record_success(
            AdviceResult(
                kind=analysis_kind,
                text=text,
                transaction_count=len(snapshot),
                budget=budget_amount,
                generated_at=self._clock(),
            )
        )
        logger.info(
            {
                "event": "advice_generated",
                "provider": self._provider.name,
                "analysis_type": analysis_kind.value,
                "ledger_size": len(snapshot),
                "outbound_transactions": len(outbound),
                "shared_flight": shared,
            }
        )
        return text

    def flight_key(self, kind: AnalysisKind, outbound: List[ExpenseRecord], budget: Decimal) -> Tuple[str, str]:
        snapshot_hash = hash_payload(
            {"transactions": [record.to_payload() for record in outbound], "budget": str(budget)}
        )
        return kind.value, snapshot_hash

    def pending_followers(self, key: Hashable) -> int:
        return self._flights.followers(key)

    def latest(self, kind: AnalysisKind | str) -> Optional[AdviceResult]:
        with self._lock:
            return self._results.get(AnalysisKind.parse(kind))

    def status(self, kind: AnalysisKind | str) -> AdviceStatus:
        analysis_kind = AnalysisKind.parse(kind)
        with self._lock:
            return AdviceStatus(
                kind=analysis_kind,
                state=self._states.get(analysis_kind, AdviceState.IDLE),
                result=self._results.get(analysis_kind),
                error=self._errors.get(analysis_kind),
            )

    def statuses(self) -> List[AdviceStatus]:
        return [self.status(kind) for kind in AnalysisKind]

    def _set_state(self, kind: AnalysisKind, state: AdviceState) -> None:
        with self._lock:
            self._states[kind] = state

    def _record_success(self, result: AdviceResult) -> None:
        with self._lock:
            self._states[result.kind] = AdviceState.SUCCEEDED
            self._results[result.kind] = result
            self._errors.pop(result.kind, None)

    def _record_failure(self, kind: AnalysisKind, message: str) -> None:
        with self._lock:
            self._states[kind] = AdviceState.FAILED
            self._errors[kind] = message
        logger.warning(
            {
                "event": "advice_failed",
                "provider": self._provider.name,
                "analysis_type": kind.value,
                "error_message": message,
            }
        )
