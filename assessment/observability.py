from __future__ import annotations

import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from assessment.settings import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    # httpx logs one INFO line per coordinator request.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def init_otel(app: object, settings: Settings) -> bool:
    """Install the tracer provider and instrument FastAPI and httpx. Returns False when disabled."""
    if not settings.observability_enabled:
        logger.info("Tracing disabled")
        return False

    resource = Resource.create(
        {"service.name": settings.otel_service_name, "deployment.environment": settings.env}
    )
    # Spans inherit the caller's sampling decision.
    provider = TracerProvider(resource=resource, sampler=ParentBased(TraceIdRatioBased(settings.otel_sample_rate)))

    if settings.otel_exporter_console:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))

    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app)  # type: ignore[arg-type]
    HTTPXClientInstrumentor().instrument()
    logger.info(
        f"Tracing enabled service={settings.otel_service_name} sample_rate={settings.otel_sample_rate}"
    )
    return True


def get_tracer() -> trace.Tracer:
    return trace.get_tracer("assessment")
