import threading
import time
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from advice_provider import AdviceProviderRequest, AdviceProviderResponse, AnalysisKind
from advice_requester import AdviceRequester, AdviceState, SingleFlight
from errors import AdviceGenerationError, NoDataError, ValidationError
from expense_model import ExpenseCategory, ExpenseRecord


class RecordingProvider:
    name = "recording"

    def __init__(self, text: str = "Spend less on chai.", error: Exception | None = None):
        self.requests: list[AdviceProviderRequest] = []
        self._text = text
        self._error = error

    def generate(self, request: AdviceProviderRequest) -> AdviceProviderResponse:
        self.requests.append(request)
        if self._error is not None:
            raise self._error
        return AdviceProviderResponse(text=f"{self._text} [{request.kind.value}]")


class BlockingProvider:
    """Holds every call until `release` is set so concurrent callers can pile up."""

    name = "blocking"

    def __init__(self) -> None:
        self.calls = 0
        self.release = threading.Event()

    def generate(self, request: AdviceProviderRequest) -> AdviceProviderResponse:
        self.calls += 1
        self.release.wait(timeout=5)
        return AdviceProviderResponse(text="shared advice")


def make_records(count: int) -> list[ExpenseRecord]:
    return [
        ExpenseRecord(
            id=f"rec-{index}",
            amount=Decimal(index + 1),
            category=ExpenseCategory.FOOD,
            description=f"Snack {index}",
            date=date(2024, 3, 1),
        )
        for index in range(count)
    ]


@pytest.mark.parametrize("kind", list(AnalysisKind))
def test_empty_snapshot_fails_without_calling_provider(kind: AnalysisKind) -> None:
    provider = RecordingProvider()
    requester = AdviceRequester(provider)

    with pytest.raises(NoDataError):
        requester.request_advice(kind, [], Decimal(15000))

    assert provider.requests == []
    assert requester.status(kind).state is AdviceState.IDLE


def test_snapshot_is_truncated_to_newest_twenty() -> None:
    provider = RecordingProvider()
    requester = AdviceRequester(provider)
    snapshot = make_records(1000)

    requester.request_advice(AnalysisKind.PATTERN_ANALYSIS, snapshot, Decimal(15000))

    assert len(provider.requests) == 1
    sent = provider.requests[0]
    assert [record.id for record in sent.transactions] == [record.id for record in snapshot[:20]]
    assert sent.context["ledger_size"] == 1000


def test_success_records_latest_result() -> None:
    clock = datetime(2024, 3, 9, 12, 0, tzinfo=timezone.utc)
    requester = AdviceRequester(RecordingProvider(), clock=lambda: clock)

    text = requester.request_advice("spending_advice", make_records(3), "15000")

    assert text == "Spend less on chai. [spending_advice]"
    status = requester.status(AnalysisKind.SPENDING_ADVICE)
    assert status.state is AdviceState.SUCCEEDED
    assert status.result.text == text
    assert status.result.transaction_count == 3
    assert status.result.budget == Decimal(15000)
    assert status.result.generated_at == clock


def test_new_result_supersedes_previous_one() -> None:
    requester = AdviceRequester(RecordingProvider())
    records = make_records(2)

    requester.request_advice(AnalysisKind.SPENDING_ADVICE, records, Decimal(1000))
    requester.request_advice(AnalysisKind.SPENDING_ADVICE, records, Decimal(2000))

    assert requester.latest(AnalysisKind.SPENDING_ADVICE).budget == Decimal(2000)
    assert requester.latest(AnalysisKind.PATTERN_ANALYSIS) is None


def test_failure_propagates_and_keeps_previous_result() -> None:
    provider = RecordingProvider()
    requester = AdviceRequester(provider)
    records = make_records(2)
    requester.request_advice(AnalysisKind.BUDGET_RECOMMENDATION, records, Decimal(15000))

    provider._error = AdviceGenerationError("OpenAI API error: Too Many Requests")
    with pytest.raises(AdviceGenerationError, match="Too Many Requests"):
        requester.request_advice(AnalysisKind.BUDGET_RECOMMENDATION, records, Decimal(15000))

    status = requester.status(AnalysisKind.BUDGET_RECOMMENDATION)
    assert status.state is AdviceState.FAILED
    assert status.error == "OpenAI API error: Too Many Requests"
    assert status.result is not None
    assert len(provider.requests) == 2


def test_invalid_kind_and_budget_are_rejected_before_any_call() -> None:
    provider = RecordingProvider()
    requester = AdviceRequester(provider)

    with pytest.raises(ValidationError, match="Invalid analysis type"):
        requester.request_advice("horoscope", make_records(1), Decimal(100))
    with pytest.raises(ValidationError):
        requester.request_advice(AnalysisKind.SPENDING_ADVICE, make_records(1), "lots")

    assert provider.requests == []


def test_transaction_limit_must_be_positive() -> None:
    with pytest.raises(ValueError):
        AdviceRequester(RecordingProvider(), transaction_limit=0)


def test_concurrent_identical_requests_share_one_call() -> None:
    provider = BlockingProvider()
    requester = AdviceRequester(provider)
    records = make_records(5)
    key = requester.flight_key(AnalysisKind.SPENDING_ADVICE, records, Decimal(15000))
    results: list[str] = []

    def ask() -> None:
        results.append(requester.request_advice(AnalysisKind.SPENDING_ADVICE, records, Decimal(15000)))

    threads = [threading.Thread(target=ask) for _ in range(2)]
    for thread in threads:
        thread.start()

    deadline = time.monotonic() + 5
    while requester.pending_followers(key) < 1 and time.monotonic() < deadline:
        time.sleep(0.01)
    provider.release.set()
    for thread in threads:
        thread.join(timeout=5)

    assert provider.calls == 1
    assert results == ["shared advice", "shared advice"]


def test_single_flight_forgets_settled_calls() -> None:
    flights = SingleFlight()

    assert flights.do("key", lambda: 1) == (1, False)
    assert flights.do("key", lambda: 2) == (2, False)
    assert flights.in_flight() == 0


def test_single_flight_shares_exceptions_with_followers() -> None:
    flights = SingleFlight()
    started = threading.Event()
    release = threading.Event()
    errors: list[Exception] = []

    def failing():
        started.set()
        release.wait(timeout=5)
        raise AdviceGenerationError("boom")

    def call(fn):
        try:
            flights.do("key", fn)
        except AdviceGenerationError as exc:
            errors.append(exc)

    leader = threading.Thread(target=call, args=(failing,))
    leader.start()
    started.wait(timeout=5)
    follower = threading.Thread(target=call, args=(lambda: "unused",))
    follower.start()

    deadline = time.monotonic() + 5
    while flights.followers("key") < 1 and time.monotonic() < deadline:
        time.sleep(0.01)
    release.set()
    leader.join(timeout=5)
    follower.join(timeout=5)

    assert len(errors) == 2
    assert errors[0] is errors[1]
