"""
Finance Service exposes the expense ledger, receipt OCR, and AI advice flows over HTTP.

`/ai-advisor` and `/process-receipt` are the stateless LLM endpoints the
dashboard calls directly; the `/sessions/...` routes keep a per-session ledger
on the server so summaries, receipt appends, and advice run against one store.
"""

import logging
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

SRC_DIR = Path(__file__).resolve().parent
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

SERVICES_ROOT = SRC_DIR.parents[1]
if str(SERVICES_ROOT) not in sys.path:
    sys.path.insert(0, str(SERVICES_ROOT))

from advice_provider import AdviceProvider, AnalysisKind, build_advice_provider
from advice_requester import AdviceRequester, AdviceStatus
from errors import FinanceServiceError, NoDataError, UpstreamError, ValidationError
from expense_model import parse_amount
from expense_validation import parse_transactions, validate_expense_submission
from identity import TokenVerifier, bearer_token, build_token_verifier
from ledger_store import LedgerSession, SessionRegistry
from middleware.rate_limit import SimpleRateLimiter, build_default_rate_limiter
from persistence.database import get_session, init_db
from persistence.repository import AnalysisRepository
from receipt_provider import ReceiptScanner, build_receipt_provider
from receipt_reconciler import reconcile
from settings import LedgerSettings, load_ledger_settings
from shared.observability.privacy import hash_payload
from shared.observability.telemetry import bind_request_context, ensure_request_id, reset_request_context, setup_telemetry
from shared.provider_settings import load_provider_settings

logger = logging.getLogger(__name__)

SERVICE_NAME = "finance-service"
CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"
LLM_ENDPOINT_PATHS = frozenset({"/ai-advisor", "/process-receipt"})


def _load_advice_provider() -> AdviceProvider:
    settings = load_provider_settings(
        provider_env="ADVISOR_PROVIDER",
        timeout_env="ADVISOR_PROVIDER_TIMEOUT_SECONDS",
        temperature_env="ADVISOR_PROVIDER_TEMPERATURE",
        max_tokens_env="ADVISOR_PROVIDER_MAX_TOKENS",
    )
    return build_advice_provider(settings.provider_name, settings=settings)


def _load_receipt_scanner() -> ReceiptScanner:
    settings = load_provider_settings(
        provider_env="RECEIPT_PROVIDER",
        timeout_env="RECEIPT_PROVIDER_TIMEOUT_SECONDS",
        temperature_env="RECEIPT_PROVIDER_TEMPERATURE",
        max_tokens_env="RECEIPT_PROVIDER_MAX_TOKENS",
        default_temperature=0.1,
    )
    return ReceiptScanner(build_receipt_provider(settings.provider_name, settings=settings))


def configure_state(target: FastAPI) -> None:
    """(Re)build settings, providers, and session storage from the environment."""
    ledger_settings = load_ledger_settings()
    advice_provider = _load_advice_provider()
    limit = ledger_settings.advice_transaction_limit

    target.state.ledger_settings = ledger_settings
    target.state.advisor = AdviceRequester(advice_provider, transaction_limit=limit)
    target.state.sessions = SessionRegistry(lambda: AdviceRequester(advice_provider, transaction_limit=limit))
    target.state.receipt_scanner = _load_receipt_scanner()
    target.state.token_verifier = build_token_verifier()
    logger.info(
        {
            "event": "finance_service_configured",
            "advice_provider": advice_provider.name,
            "receipt_provider": target.state.receipt_scanner.provider.name,
            "auth_provider": target.state.token_verifier.name,
        }
    )


app = FastAPI(title="Finance Service")
setup_telemetry(app, service_name=SERVICE_NAME)
app.state.rate_limiter = build_default_rate_limiter()
configure_state(app)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = ensure_request_id(request)
    token = bind_request_context(request_id)
    try:
        response = await call_next(request)
        response.headers.setdefault("x-request-id", request_id)
        return response
    finally:
        reset_request_context(token)


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    limiter: SimpleRateLimiter = app.state.rate_limiter
    client_id = _client_ip(request) or "unknown"
    decision = await limiter.allow(client_id)
    if decision.allowed:
        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response

    logger.warning(
        {
            "event": "rate_limited",
            "client_ip": client_id,
            "retry_after_seconds": decision.retry_after,
        }
    )
    response = error_response(
        429,
        "rate_limit_exceeded",
        "Too many requests. Please retry shortly.",
    )
    response.headers["Retry-After"] = str(max(1, int(decision.retry_after or 1)))
    return response


@app.middleware("http")
async def cors_middleware(request: Request, call_next):
    """Answer preflights directly and stamp the CORS headers on every response."""
    if request.method == "OPTIONS":
        response = Response(status_code=200)
    else:
        response = await call_next(request)
    settings: LedgerSettings = app.state.ledger_settings
    response.headers["Access-Control-Allow-Origin"] = settings.cors_allow_origin
    response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
    return response


def error_response(status_code: int, error_code: str, details: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error_code, "details": details},
    )


def failure_response(message: str) -> JSONResponse:
    """Envelope used by the two LLM endpoints for every kind of failure."""
    return JSONResponse(status_code=500, content={"success": False, "error": message})


def _ledger_error_response(exc: FinanceServiceError) -> JSONResponse:
    if isinstance(exc, ValidationError):
        return error_response(400, "validation_error", str(exc))
    if isinstance(exc, NoDataError):
        return error_response(400, "no_data", str(exc))
    if isinstance(exc, UpstreamError):
        return error_response(502, "upstream_error", str(exc))
    return error_response(500, "internal_error", str(exc))


def _client_ip(request: Request) -> str | None:
    client = request.client
    if client:
        return client.host
    return None


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning({"event": "request_validation_failed", "path": request.url.path, "error_count": len(exc.errors())})
    if request.url.path in LLM_ENDPOINT_PATHS:
        return failure_response("Invalid request body")
    return error_response(400, "invalid_request", "Request body or parameters are invalid.")


@app.on_event("startup")
def on_startup() -> None:
    """Initialize persistence before serving requests."""
    init_db()


class AdvisorPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transactions: Any = None
    analysis_type: Any = Field(default=None, alias="analysisType")
    budget: Any = None


class ReceiptPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_base64: Optional[str] = Field(default=None, alias="imageBase64")


class SessionAdvicePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    analysis_type: Any = Field(default=None, alias="analysisType")
    budget: Any = None


def _resolve_budget(raw_budget: Any) -> Decimal:
    if raw_budget is None:
        return app.state.ledger_settings.monthly_budget
    budget = parse_amount(raw_budget)
    if budget is None:
        raise ValidationError("Budget must be a number")
    return budget


def _persist_analysis(
    db: Session,
    authorization: Optional[str],
    *,
    kind: AnalysisKind,
    analysis: str,
    transaction_count: int,
    budget: Decimal,
) -> None:
    """Store the analysis for the token's user; no token or no user means nothing is stored."""
    token = bearer_token(authorization)
    if not token:
        return

    verifier: TokenVerifier = app.state.token_verifier
    user_id = verifier.verify_token(token)
    if not user_id:
        return

    try:
        AnalysisRepository(db).record_analysis(
            user_id,
            kind.value,
            analysis,
            transaction_count=transaction_count,
            budget=budget,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            {
                "event": "analysis_persist_failed",
                "analysis_type": kind.value,
                "user_hash": hash_payload(user_id),
                "error_type": type(exc).__name__,
                "error_message": str(exc),
            }
        )


def _find_session(session_id: str) -> LedgerSession | None:
    registry: SessionRegistry = app.state.sessions
    return registry.get(session_id)


def _status_payload(status: AdviceStatus) -> Dict[str, Any]:
    result = status.result
    return {
        "type": status.kind.value,
        "title": status.kind.display_title,
        "state": status.state.value,
        "analysis": result.text if result else None,
        "generated_at": result.generated_at.isoformat() if result else None,
        "transaction_count": result.transaction_count if result else None,
        "error": status.error,
    }


@app.get("/health")
def health_check() -> dict:
    """Reports service uptime so orchestrators can confirm this entrypoint is available."""
    return {"status": "ok", "service": SERVICE_NAME}


@app.post("/ai-advisor", response_model=None)
def ai_advisor(
    payload: AdvisorPayload,
    request: Request,
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_session),
) -> Dict[str, Any] | JSONResponse:
    """Generates one analysis over the newest transactions the dashboard sent."""
    request_id = ensure_request_id(request)
    advisor: AdviceRequester = app.state.advisor
    try:
        kind = AnalysisKind.parse(payload.analysis_type)
        transactions = parse_transactions(payload.transactions)
        budget = _resolve_budget(payload.budget)
        analysis = advisor.request_advice(kind, transactions, budget, context={"request_id": request_id})
    except FinanceServiceError as exc:
        logger.error(
            {
                "event": "ai_advisor_failed",
                "request_id": request_id,
                "error_type": type(exc).__name__,
                "error_message": str(exc),
            }
        )
        return failure_response(str(exc))

    _persist_analysis(
        db,
        authorization,
        kind=kind,
        analysis=analysis,
        transaction_count=len(transactions),
        budget=budget,
    )
    return {"success": True, "analysis": analysis, "type": kind.value}


@app.post("/process-receipt", response_model=None)
def process_receipt(payload: ReceiptPayload, request: Request) -> Dict[str, Any] | JSONResponse:
    """Runs OCR over a base64 receipt image and returns the extracted fields."""
    request_id = ensure_request_id(request)
    scanner: ReceiptScanner = app.state.receipt_scanner
    try:
        scan = scanner.scan(payload.image_base64, context={"request_id": request_id})
    except FinanceServiceError as exc:
        logger.error(
            {
                "event": "process_receipt_failed",
                "request_id": request_id,
                "error_type": type(exc).__name__,
                "error_message": str(exc),
            }
        )
        return failure_response(str(exc))

    return {"success": True, "data": scan.data, "rawText": scan.raw_text}


@app.post("/sessions/{session_id}/expenses", response_model=None, status_code=201)
def add_expense(session_id: str, payload: Dict[str, Any]) -> Dict[str, Any] | JSONResponse:
    """Validates an add-expense form submission and prepends it to the session ledger."""
    try:
        draft = validate_expense_submission(payload)
    except ValidationError as exc:
        return _ledger_error_response(exc)

    registry: SessionRegistry = app.state.sessions
    record = registry.get_or_create(session_id).ledger.append(draft)
    logger.info({"event": "expense_added", "session_id": session_id, "category": record.category.value})
    return record.to_payload()


@app.get("/sessions/{session_id}/expenses", response_model=None)
def list_expenses(session_id: str) -> Dict[str, Any] | JSONResponse:
    session = _find_session(session_id)
    if session is None:
        return error_response(404, "session_not_found", "Ledger session not found.")
    return {
        "session_id": session_id,
        "expenses": [record.to_payload() for record in session.ledger.records()],
    }


@app.get("/sessions/{session_id}/summary", response_model=None)
def ledger_summary(
    session_id: str,
    budget: Optional[str] = None,
    window_days: Optional[int] = None,
) -> Dict[str, Any] | JSONResponse:
    """Dashboard figures: totals, budget progress, average per day, category breakdown, recent expenses."""
    session = _find_session(session_id)
    if session is None:
        return error_response(404, "session_not_found", "Ledger session not found.")

    settings: LedgerSettings = app.state.ledger_settings
    try:
        summary = session.ledger.summarize(
            _resolve_budget(budget),
            window_days=window_days if window_days is not None else settings.average_window_days,
        )
    except ValidationError as exc:
        return _ledger_error_response(exc)
    except ValueError as exc:
        return error_response(400, "validation_error", str(exc))

    return {"session_id": session_id, **summary.to_payload()}


@app.post("/sessions/{session_id}/receipts", response_model=None, status_code=201)
def scan_receipt_into_ledger(
    session_id: str,
    payload: ReceiptPayload,
    request: Request,
) -> Dict[str, Any] | JSONResponse:
    """Scans a receipt, reconciles the extraction into an expense, and appends it."""
    request_id = ensure_request_id(request)
    scanner: ReceiptScanner = app.state.receipt_scanner
    try:
        scan = scanner.scan(payload.image_base64, context={"request_id": request_id, "session_id": session_id})
    except FinanceServiceError as exc:
        return _ledger_error_response(exc)

    draft = reconcile(scan.extraction)
    registry: SessionRegistry = app.state.sessions
    record = registry.get_or_create(session_id).ledger.append(draft)
    logger.info(
        {
            "event": "receipt_expense_added",
            "request_id": request_id,
            "session_id": session_id,
            "used_fallback": scan.used_fallback,
            "item_count": len(scan.extraction.items),
        }
    )
    return {
        "expense": record.to_payload(),
        "items": [item.to_payload() for item in scan.extraction.items],
        "rawText": scan.raw_text,
        "usedFallback": scan.used_fallback,
    }


@app.post("/sessions/{session_id}/advice", response_model=None)
def request_session_advice(
    session_id: str,
    payload: SessionAdvicePayload,
    request: Request,
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_session),
) -> Dict[str, Any] | JSONResponse:
    """Generates advice over the session ledger and records it as the latest for that kind."""
    session = _find_session(session_id)
    if session is None:
        return error_response(404, "session_not_found", "Ledger session not found.")

    request_id = ensure_request_id(request)
    advisor: AdviceRequester = session.advisor
    snapshot = session.ledger.records()
    try:
        kind = AnalysisKind.parse(payload.analysis_type)
        budget = _resolve_budget(payload.budget)
        analysis = advisor.request_advice(kind, snapshot, budget, context={"request_id": request_id})
    except FinanceServiceError as exc:
        return _ledger_error_response(exc)

    _persist_analysis(
        db,
        authorization,
        kind=kind,
        analysis=analysis,
        transaction_count=len(snapshot),
        budget=budget,
    )
    return {"session_id": session_id, **_status_payload(advisor.status(kind))}


@app.get("/sessions/{session_id}/advice", response_model=None)
def list_session_advice(session_id: str) -> Dict[str, Any] | JSONResponse:
    session = _find_session(session_id)
    if session is None:
        return error_response(404, "session_not_found", "Ledger session not found.")
    advisor: AdviceRequester = session.advisor
    return {"session_id": session_id, "advice": [_status_payload(status) for status in advisor.statuses()]}


def reload_providers_for_tests() -> None:
    """Re-read provider, auth, and ledger settings after tests change the environment."""
    configure_state(app)
