"""Optional OpenTelemetry tracing for the API and the Celery workers.

Tracing is off unless ``OTEL_ENABLED`` is set, and the packages come from the
``otel`` extra. Outbound Mercado Pago calls are traced through httpx with the
query string dropped from the recorded URL, since customer and payment
searches put payer emails and external references there.
"""

import logging
import os

logger = logging.getLogger(__name__)

SERVICE_NAME = "partner-billing"
UNTRACED_URLS = "health,health/ready,metrics"


def otel_enabled() -> bool:
    return os.getenv("OTEL_ENABLED", "false").lower() in {"1", "true", "yes", "on"}


def redact_gateway_url(span, request) -> None:
    """httpx request hook: record gateway URLs without their query string."""
    if span is None or not span.is_recording():
        return
    url = str(request.url).partition("?")[0]
    span.set_attribute("http.url", url)
    span.set_attribute("url.full", url)


def _install_provider(service_name: str) -> bool:
    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        logger.exception("OpenTelemetry dependencies not available.")
        return False

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    resource = Resource.create(
        {"service.name": os.getenv("OTEL_SERVICE_NAME", service_name)}
    )
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=endpoint) if endpoint else OTLPSpanExporter()
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return True


def _instrument_backends() -> None:
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

    from app.db import SessionLocal

    SQLAlchemyInstrumentor().instrument(engine=SessionLocal.kw["bind"])
    HTTPXClientInstrumentor().instrument(request_hook=redact_gateway_url)


def setup_otel(app) -> bool:
    """Trace API requests plus the database and gateway calls they make."""
    if not otel_enabled() or not _install_provider(SERVICE_NAME):
        return False
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

    FastAPIInstrumentor.instrument_app(app, excluded_urls=UNTRACED_URLS)
    _instrument_backends()
    logger.info("OpenTelemetry tracing enabled for the API")
    return True


def setup_worker_otel() -> bool:
    """Trace billing jobs; called once per Celery worker process."""
    if not otel_enabled() or not _install_provider(f"{SERVICE_NAME}-worker"):
        return False
    from opentelemetry.instrumentation.celery import CeleryInstrumentor

    CeleryInstrumentor().instrument()
    _instrument_backends()
    logger.info("OpenTelemetry tracing enabled for the worker")
    return True
