"""OpenTelemetry for the ingestion backend.

Everything here is inert until OTEL_EXPORTER_OTLP_ENDPOINT is set: without a
configured provider the API hands out no-op tracers, so the pipeline can open
step spans unconditionally. Metrics stay on Prometheus (see app.core.metrics);
only traces and logs are shipped over OTLP.
"""
import logging
from contextlib import contextmanager
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

from app.core.config import settings

logger = logging.getLogger(__name__)

INGESTION_TRACER = "app.ingestion"

ATTR_ORDER_ID = "woocommerce.order_id"
ATTR_STEP = "ingestion.step"
ATTR_STEP_OK = "ingestion.step.ok"


def _resource() -> Resource:
    return Resource.create({
        "service.name": settings.OTEL_SERVICE_NAME,
        "service.namespace": "reseller-erp",
        "service.version": "1.0.0",
        "deployment.environment": settings.OTEL_ENVIRONMENT
    })


def initialize_otel() -> bool:
    """Install the OTLP trace pipeline. Returns False when tracing is off."""
    if not settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        return False

    try:
        provider = TracerProvider(resource=_resource())
        provider.add_span_processor(BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True)
        ))
        trace.set_tracer_provider(provider)
        return True
    except Exception as e:
        logger.warning(f"Failed to initialize OpenTelemetry: {e}")
        return False


def setup_otel_logging() -> bool:
    """Forward application log records (webhook, reminders, ...) over OTLP"""
    if not settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        return False

    try:
        from opentelemetry._logs import set_logger_provider
        from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
        from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
        from opentelemetry.sdk._logs.export import BatchLogRecordProcessor

        logger_provider = LoggerProvider(resource=_resource())
        logger_provider.add_log_record_processor(BatchLogRecordProcessor(
            OTLPLogExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True)
        ))
        set_logger_provider(logger_provider)

        logging.getLogger().addHandler(LoggingHandler(level=logging.INFO, logger_provider=logger_provider))
        return True
    except Exception as e:
        logger.warning(f"Failed to setup OTEL logging: {e}")
        return False


def get_tracer():
    return trace.get_tracer(INGESTION_TRACER)


@contextmanager
def ingestion_step_span(step: str, woo_order_id: Optional[int]):
    """Span around one pipeline step, tagged with the store order id.

    Usage:
        with ingestion_step_span("upsert_order", 1001) as span:
            result = upsert_order(...)
            record_step_outcome(span, result.ok, result.error)
    """
    with get_tracer().start_as_current_span(f"ingestion.{step}") as span:
        span.set_attribute(ATTR_STEP, step)
        if woo_order_id is not None:
            span.set_attribute(ATTR_ORDER_ID, woo_order_id)
        yield span


def record_step_outcome(span, ok: bool, error: Optional[str] = None) -> None:
    span.set_attribute(ATTR_STEP_OK, ok)
    if ok:
        span.set_status(Status(StatusCode.OK))
    else:
        span.set_status(Status(StatusCode.ERROR, error or "step failed"))


def instrument_fastapi(app):
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine):
    """Trace every statement the repository issues"""
    try:
        SQLAlchemyInstrumentor().instrument(engine=engine)
        logger.info("SQLAlchemy instrumentation enabled")
    except Exception as e:
        logger.warning(f"Failed to instrument SQLAlchemy: {e}")
