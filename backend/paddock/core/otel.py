"""OpenTelemetry tracing for the webhook pipeline

Counters live in Prometheus (paddock.core.metrics); OTLP carries traces and
the log stream, including the reconciliation audit entries. Without an
endpoint the module-level tracer stays a no-op and the span helpers cost
nothing.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode

from paddock.core.config import settings

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("paddock.webhooks")


def _resource() -> Resource:
    return Resource.create({
        "service.name": settings.OTEL_SERVICE_NAME,
        "service.version": "1.0.0",
        "deployment.environment": settings.OTEL_ENVIRONMENT,
    })


def initialize_otel() -> bool:
    """Install the OTLP trace provider; returns False when tracing stays off"""
    endpoint = settings.OTEL_EXPORTER_OTLP_ENDPOINT
    if not endpoint:
        return False

    try:
        provider = TracerProvider(resource=_resource())
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True)))
        trace.set_tracer_provider(provider)
        return True
    except Exception as e:
        logger.warning(f"Failed to initialize OpenTelemetry tracing: {e}")
        return False


def setup_otel_logging() -> bool:
    """Forward log records over OTLP so reconciliation fields arrive as attributes"""
    endpoint = settings.OTEL_EXPORTER_OTLP_ENDPOINT
    if not endpoint:
        return False

    try:
        from opentelemetry._logs import set_logger_provider
        from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
        from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
        from opentelemetry.sdk._logs.export import BatchLogRecordProcessor

        provider = LoggerProvider(resource=_resource())
        provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter(endpoint=endpoint, insecure=True)))
        set_logger_provider(provider)
        logging.getLogger().addHandler(LoggingHandler(level=logging.NOTSET, logger_provider=provider))
        return True
    except Exception as e:
        logger.warning(f"Failed to set up OTLP log export: {e}")
        return False


@contextmanager
def pipeline_span(name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[Span]:
    """Span for one pipeline run (a delivery or an operator replay); None values are skipped"""
    with tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def record_ack(span: Span, ack, rejection_reason: Optional[str] = None) -> None:
    """Copy an acknowledgment decision onto the span.

    Rejections (400) and retry requests (503) mark the span as an error;
    acknowledged failures keep OK status but carry their error kind.
    """
    span.set_attribute("webhook.status_code", ack.status_code)
    if ack.event_id:
        span.set_attribute("webhook.event_id", ack.event_id)
    if ack.event_type:
        span.set_attribute("webhook.event_type", ack.event_type)
    if ack.outcome is not None:
        span.set_attribute("webhook.outcome", ack.outcome.value)
    if ack.error_kind is not None:
        span.set_attribute("webhook.error_kind", ack.error_kind.value)
    if rejection_reason:
        span.set_attribute("webhook.rejection_reason", rejection_reason)

    if ack.status_code >= 400:
        span.set_status(Status(StatusCode.ERROR, rejection_reason or ack.state.value))


def instrument_fastapi(app) -> None:
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine) -> None:
    """Store spans nest under webhook.process, which shows where a slow delivery waited"""
    try:
        SQLAlchemyInstrumentor().instrument(engine=engine)
        logger.info("SQLAlchemy instrumentation enabled")
    except Exception as e:
        logger.warning(f"Failed to instrument SQLAlchemy: {e}")
