"""Logging and tracing for enrichment runs.

Every run is one ``enrichment.run`` span with an ``enrichment.candidate``
child per bookshop. Failed candidates mark their span as an error, so a
trace backend shows failing bookshops without parsing logs. Log lines carry
the current trace and span ids.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
import logging
import os
from typing import TYPE_CHECKING

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, SERVICE_NAMESPACE, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode

from bookshop_enrichment.core.config import Settings

if TYPE_CHECKING:
    from bookshop_enrichment.jobs.outcomes import RunSummary

BOOKSHOP_NAMESPACE = "bookshops"
PROVIDER_NAME = "google_places"
RUN_SPAN_NAME = "enrichment.run"
CANDIDATE_SPAN_NAME = "enrichment.candidate"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s span_id=%(span_id)s %(message)s"

logger = logging.getLogger(__name__)
_tracer = trace.get_tracer("bookshop_enrichment")
_httpx_instrumentor = HTTPXClientInstrumentor()
_plain_record_factory = logging.getLogRecordFactory()
_trace_ids_in_logs = False


@dataclass(slots=True)
class TelemetryRuntime:
    enabled: bool
    provider: TracerProvider | None


def build_resource(settings: Settings) -> Resource:
    return Resource.create(
        {
            SERVICE_NAME: settings.otel_service_name,
            SERVICE_NAMESPACE: BOOKSHOP_NAMESPACE,
            DEPLOYMENT_ENVIRONMENT: settings.environment,
            "enrichment.provider": PROVIDER_NAME,
            "enrichment.batch_size": settings.refresh_batch_size,
            "enrichment.staleness_window_days": settings.staleness_window_days,
            "enrichment.pacing_seconds": settings.refresh_pacing_seconds,
        }
    )


def configure_logging(level: int = logging.INFO) -> None:
    _stamp_trace_ids_on_log_records()
    if not logging.getLogger().handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)


def setup_telemetry(settings: Settings) -> TelemetryRuntime:
    if not settings.otel_enabled:
        return TelemetryRuntime(enabled=False, provider=None)
    if settings.otel_log_correlation:
        _stamp_trace_ids_on_log_records()

    provider = TracerProvider(
        resource=build_resource(settings),
        sampler=TraceIdRatioBased(settings.otel_trace_sample_ratio),
    )
    exporter = _span_exporter(settings)
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    # Places calls show up as child spans of the candidate being refreshed.
    _httpx_instrumentor.instrument()
    return TelemetryRuntime(enabled=True, provider=provider)


def shutdown_telemetry(runtime: TelemetryRuntime) -> None:
    if not runtime.enabled:
        return
    _httpx_instrumentor.uninstrument()
    if runtime.provider is not None:
        runtime.provider.force_flush()
        runtime.provider.shutdown()


@contextmanager
def enrichment_run_span(
    *,
    batch_size: int,
    staleness_window: timedelta,
    resolve_missing: bool,
    tracer: trace.Tracer | None = None,
) -> Iterator[Span]:
    with (tracer or _tracer).start_as_current_span(RUN_SPAN_NAME) as span:
        span.set_attribute("enrichment.batch_size", batch_size)
        span.set_attribute("enrichment.staleness_window_days", staleness_window.days)
        span.set_attribute("enrichment.resolve_missing", resolve_missing)
        yield span


@contextmanager
def candidate_span(bookshop_id: int, *, has_reference: bool, tracer: trace.Tracer | None = None) -> Iterator[Span]:
    with (tracer or _tracer).start_as_current_span(CANDIDATE_SPAN_NAME) as span:
        span.set_attribute("bookshop.id", bookshop_id)
        span.set_attribute("bookshop.has_place_id", has_reference)
        yield span


def record_candidate_outcome(span: Span, *, status: str, detail: str | None, failed: bool) -> None:
    span.set_attribute("enrichment.status", status)
    if detail:
        span.set_attribute("enrichment.detail", detail)
    if failed:
        span.set_status(Status(StatusCode.ERROR, detail or status))


def record_run_summary(span: Span, summary: RunSummary) -> None:
    span.set_attribute("enrichment.total", summary.total)
    span.set_attribute("enrichment.refreshed", summary.refreshed)
    span.set_attribute("enrichment.failed", summary.failed)
    span.set_attribute("enrichment.skipped", summary.skipped)
    if summary.interrupted:
        span.set_attribute("enrichment.interrupted", summary.interrupted)
        span.set_status(Status(StatusCode.ERROR, summary.interrupted))


def parse_headers(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key=value`` as used by ``OTEL_EXPORTER_OTLP_HEADERS``."""
    headers: dict[str, str] = {}
    for item in (raw or "").split(","):
        key, separator, value = item.partition("=")
        if separator and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def _span_exporter(settings: Settings) -> OTLPSpanExporter | None:
    endpoint = (
        settings.otel_exporter_otlp_endpoint
        or os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    )
    if not endpoint:
        logger.info("no OTLP endpoint configured; enrichment spans stay in process for %s", settings.otel_service_name)
        return None
    headers = parse_headers(settings.otel_exporter_otlp_headers or os.getenv("OTEL_EXPORTER_OTLP_HEADERS"))
    return OTLPSpanExporter(endpoint=endpoint, headers=headers or None)


def _stamp_trace_ids_on_log_records() -> None:
    global _trace_ids_in_logs
    if _trace_ids_in_logs:
        return

    def factory(*args: object, **kwargs: object) -> logging.LogRecord:
        record = _plain_record_factory(*args, **kwargs)
        context = trace.get_current_span().get_span_context()
        record.trace_id = format(context.trace_id, "032x") if context.is_valid else "0" * 32
        record.span_id = format(context.span_id, "016x") if context.is_valid else "0" * 16
        return record

    logging.setLogRecordFactory(factory)
    _trace_ids_in_logs = True
