"""
OpenTelemetry wiring.

With ``OBSERVABILITY__OTEL_ENABLED`` off (the default, and always under
pytest) only logging is configured and the no-op global providers stay in
place, so ``get_tracer`` / ``get_meter`` callers need no special casing.
"""

import os
from collections.abc import Sequence

import structlog
from fastapi import FastAPI
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import (
    DEPLOYMENT_ENVIRONMENT,
    SERVICE_NAME,
    SERVICE_VERSION,
    Resource,
)
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter, SpanExportResult
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from auth247.platform.logging import setup_logging
from auth247.platform.settings import settings

logger = structlog.get_logger(__name__)

_TRACES_PATH = "/v1/traces"
_METRICS_PATH = "/v1/metrics"
_EXCLUDED_URLS = "health"


class QuietSpanExporter(SpanExporter):
    """
    Span exporter that tolerates an unreachable collector.

    The first failed export is logged; later failures are silent until an
    export succeeds again.
    """

    def __init__(self, inner: SpanExporter) -> None:
        self.inner = inner
        self._collector_down = False

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        try:
            outcome = self.inner.export(spans)
        except Exception as e:
            if not self._collector_down:
                self._collector_down = True
                logger.warning("telemetry.span_export_failed", error=str(e))
            return SpanExportResult.FAILURE

        if self._collector_down:
            self._collector_down = False
            logger.info("telemetry.span_export_recovered")
        return outcome

    def shutdown(self) -> None:
        try:
            self.inner.shutdown()
        except Exception as e:
            logger.debug("telemetry.exporter_shutdown_failed", error=str(e))

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        try:
            return self.inner.force_flush(timeout_millis)
        except Exception:
            return False


def _collector_url(path: str) -> str | None:
    base = settings.observability.otel_endpoint
    if not base:
        return None
    base = base.rstrip("/")
    return base if base.endswith(path) else base + path


def build_resource() -> Resource:
    attributes = {
        SERVICE_NAME: settings.observability.otel_service_name,
        SERVICE_VERSION: settings.app_version,
        DEPLOYMENT_ENVIRONMENT: settings.environment.value,
        **settings.observability.otel_resource_attributes,
    }
    return Resource.create(attributes)


def setup_telemetry(app: FastAPI | None = None) -> None:
    """Configure logging, then OTLP export and instrumentation when enabled."""
    setup_logging()

    observability = settings.observability
    if not observability.otel_enabled or os.environ.get("PYTEST_CURRENT_TEST"):
        logger.debug("telemetry.disabled")
        return

    resource = build_resource()
    if observability.enable_tracing:
        _install_tracer_provider(resource)
    if observability.enable_metrics:
        _install_meter_provider(resource)
    _instrument(app)

    logger.info(
        "telemetry.configured",
        service_name=observability.otel_service_name,
        endpoint=observability.otel_endpoint,
        tracing=observability.enable_tracing,
        metrics=observability.enable_metrics,
    )


def _install_tracer_provider(resource: Resource) -> None:
    provider = TracerProvider(
        resource=resource,
        sampler=TraceIdRatioBased(settings.observability.tracing_sample_rate),
    )
    endpoint = _collector_url(_TRACES_PATH)
    if endpoint is None:
        logger.warning("telemetry.no_trace_endpoint")
    else:
        provider.add_span_processor(
            BatchSpanProcessor(QuietSpanExporter(OTLPSpanExporter(endpoint=endpoint, timeout=5)))
        )
    trace.set_tracer_provider(provider)
    logger.info("telemetry.tracing_configured", endpoint=endpoint)


def _install_meter_provider(resource: Resource) -> None:
    readers: list[MetricReader] = []
    endpoint = _collector_url(_METRICS_PATH)
    if endpoint is None:
        logger.warning("telemetry.no_metrics_endpoint")
    else:
        readers.append(
            PeriodicExportingMetricReader(
                OTLPMetricExporter(endpoint=endpoint, timeout=30),
                export_interval_millis=60_000,
            )
        )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=readers))
    logger.info("telemetry.metrics_configured", endpoint=endpoint)


def _instrument(app: FastAPI | None) -> None:
    observability = settings.observability
    tracer_provider = trace.get_tracer_provider()

    if app is not None and observability.otel_instrument_fastapi:
        try:
            FastAPIInstrumentor.instrument_app(
                app, tracer_provider=tracer_provider, excluded_urls=_EXCLUDED_URLS
            )
        except Exception as e:
            logger.warning("telemetry.instrumentation_failed", library="fastapi", error=str(e))

    if observability.otel_instrument_sqlalchemy:
        try:
            SQLAlchemyInstrumentor().instrument(tracer_provider=tracer_provider)
        except Exception as e:
            logger.warning("telemetry.instrumentation_failed", library="sqlalchemy", error=str(e))


def get_tracer(name: str, version: str | None = None) -> trace.Tracer:
    return trace.get_tracer(name, version or "")


def get_meter(name: str, version: str | None = None) -> metrics.Meter:
    return metrics.get_meter(name, version or "")


__all__ = ["setup_telemetry", "get_tracer", "get_meter"]
