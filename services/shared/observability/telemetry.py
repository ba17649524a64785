"""
Logging and tracing bootstrap for the finance service.

Every log line is emitted as JSON and carries the service name, the current
request id, and (when tracing is on) the active trace/span ids. Tracing is off
unless `ENABLE_TELEMETRY` is truthy; spans then go to the OTLP endpoint and,
optionally, the console.
"""

from __future__ import annotations

import logging
import os
from contextvars import ContextVar, Token
from dataclasses import dataclass
from uuid import uuid4

from fastapi import FastAPI, Request
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from pythonjsonlogger import jsonlogger

CORRELATION_ID_HEADER = "x-request-id"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4318/v1/traces"
LOG_FIELDS = ("asctime", "levelname", "name", "message", "service_name", "request_id", "trace_id", "span_id")

RequestContextToken = Token

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_request_id: ContextVar[str | None] = ContextVar("finance_request_id", default=None)
_installed: set[str] = set()


@dataclass(frozen=True)
class TelemetrySettings:
    service_name: str
    traces_enabled: bool = False
    console_export: bool = False
    otlp_endpoint: str = DEFAULT_OTLP_ENDPOINT
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, default_service_name: str) -> "TelemetrySettings":
        return cls(
            service_name=os.getenv("OTEL_SERVICE_NAME") or default_service_name,
            traces_enabled=_flag("ENABLE_TELEMETRY"),
            console_export=_flag("OTEL_CONSOLE_EXPORT"),
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or DEFAULT_OTLP_ENDPOINT,
            log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
        )


class RequestContextFilter(logging.Filter):
    """Stamps service, request, and trace identifiers onto each record."""

    def __init__(self, service_name: str, traces_enabled: bool = False) -> None:
        super().__init__()
        self.service_name = service_name
        self.traces_enabled = traces_enabled

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name
        record.request_id = _request_id.get()
        record.trace_id, record.span_id = _span_ids() if self.traces_enabled else (None, None)
        return True


def setup_telemetry(app: FastAPI, service_name: str) -> TelemetrySettings:
    settings = TelemetrySettings.from_env(service_name)
    configure_logging(settings.service_name, traces_enabled=settings.traces_enabled, level=settings.log_level)
    if not settings.traces_enabled:
        return settings

    _install_tracer_provider(settings)
    FastAPIInstrumentor.instrument_app(app)
    if "httpx" not in _installed:
        HTTPXClientInstrumentor().instrument()
        _installed.add("httpx")
    LoggingInstrumentor().instrument(set_logging_format=False)
    return settings


def configure_logging(service_name: str, *, traces_enabled: bool = False, level: str = "INFO") -> None:
    """Route the root logger through a single JSON handler. Repeat calls are ignored."""
    if "logging" in _installed:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(jsonlogger.JsonFormatter(" ".join(f"%({field})s" for field in LOG_FIELDS)))
    handler.addFilter(RequestContextFilter(service_name, traces_enabled))
    threshold = getattr(logging, level, None)
    logging.basicConfig(level=threshold if isinstance(threshold, int) else logging.INFO, handlers=[handler], force=True)
    _installed.add("logging")


def ensure_request_id(request: Request | None, header_name: str = CORRELATION_ID_HEADER) -> str:
    """
    Return the request's correlation id, adopting the inbound header when present.

    The id is cached on `request.state` so handlers and middleware agree on it.
    """
    if request is None:
        return _new_request_id()

    request_id = getattr(request.state, "request_id", None) or request.headers.get(header_name) or _new_request_id()
    request.state.request_id = request_id
    return request_id


def current_request_id() -> str | None:
    return _request_id.get()


def bind_request_context(request_id: str | None) -> RequestContextToken:
    return _request_id.set(request_id)


def reset_request_context(token: RequestContextToken | None) -> None:
    if token is not None:
        _request_id.reset(token)


def _new_request_id() -> str:
    return f"{os.getenv('REQUEST_ID_PREFIX', '')}{uuid4()}"


def _install_tracer_provider(settings: TelemetrySettings) -> None:
    if isinstance(trace.get_tracer_provider(), TracerProvider):
        return

    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: settings.service_name}))
    exporters = [OTLPSpanExporter(endpoint=settings.otlp_endpoint)]
    if settings.console_export:
        exporters.append(ConsoleSpanExporter())
    for exporter in exporters:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)


def _span_ids() -> tuple[str | None, str | None]:
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return None, None
    return format(context.trace_id, "032x"), format(context.span_id, "016x")


def _flag(env_key: str) -> bool:
    return (os.getenv(env_key) or "").strip().lower() in _TRUTHY
