"""
OpenTelemetry tracing for the intake service

One span per pipeline run (``intake_pipeline.ingest``) with a child span per
stage (``intake.<stage>``). Until ``configure_tracing`` installs a provider
the global tracer is a no-op, so tests and tracing-disabled deployments pay
nothing for the spans.
"""
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (BatchSpanProcessor,
                                            ConsoleSpanExporter,
                                            SpanExporter)
from opentelemetry.trace import Span, Status, StatusCode

from intakeflow import __version__
from intakeflow.core.config import Settings, get_settings
from intakeflow.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)

STAGE_SPAN_PREFIX = "intake."

_tracer_provider: Optional[TracerProvider] = None


def _build_exporter(settings: Settings) -> SpanExporter:
    if settings.tracing_exporter == "otlp":
        if settings.tracing_otlp_endpoint:
            logger.info(f"Using OTLP exporter: {settings.tracing_otlp_endpoint}")
            return OTLPSpanExporter(endpoint=settings.tracing_otlp_endpoint)
        logger.warning("OTLP exporter selected but no endpoint configured, falling back to console")
    return ConsoleSpanExporter()


def _instrument(app=None) -> None:
    """Auto-instrument inbound HTTP, outbound collaborator calls and the audit database"""
    if app is not None:
        FastAPIInstrumentor.instrument_app(app)

    for name, instrumentor in (("httpx", HTTPXClientInstrumentor()), ("sqlalchemy", SQLAlchemyInstrumentor())):
        try:
            instrumentor.instrument()
        except Exception as e:
            logger.warning(f"Failed to instrument {name}: {e}")


def configure_tracing(app=None) -> bool:
    """
    Install the tracer provider once per process.

    Returns:
        True when tracing is active after the call
    """
    global _tracer_provider

    if _tracer_provider is not None:
        return True

    settings = get_settings()
    if not settings.enable_tracing:
        logger.info("OpenTelemetry tracing is disabled via configuration")
        return False

    provider = TracerProvider(resource=Resource.create({
        "service.name": settings.tracing_service_name,
        "service.version": __version__,
        "service.environment": settings.app_env,
    }))
    provider.add_span_processor(BatchSpanProcessor(_build_exporter(settings)))
    trace.set_tracer_provider(provider)
    _tracer_provider = provider

    _instrument(app)
    logger.info("OpenTelemetry tracing configured", extra={"exporter": settings.tracing_exporter})
    return True


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


@contextmanager
def stage_span(tracer: trace.Tracer, stage: str, **attributes: Any) -> Iterator[Span]:
    """
    Child span for one pipeline stage.

    Exceptions are recorded on the span and re-raised; stages that degrade
    to defaults never raise, so an error status here marks a real failure.
    """
    with tracer.start_as_current_span(STAGE_SPAN_PREFIX + stage, record_exception=False) as span:
        add_span_attributes(span, **attributes)
        try:
            yield span
        except Exception as e:
            if span.is_recording():
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, type(e).__name__))
            raise


def get_current_trace_id() -> Optional[str]:
    context = trace.get_current_span().get_span_context()
    if context.is_valid:
        return format(context.trace_id, '032x')
    return None


def add_span_attributes(span: Optional[Span] = None, **kwargs: Any) -> None:
    """Set non-null attributes on ``span`` (or the current span) when it is recording"""
    span = span or trace.get_current_span()
    if not span.is_recording():
        return
    for key, value in kwargs.items():
        if value is not None:
            span.set_attribute(key, value)


def shutdown_tracing() -> None:
    """Flush pending spans and close exporters"""
    global _tracer_provider

    if _tracer_provider is None:
        return
    logger.info("Shutting down OpenTelemetry tracing...")
    try:
        _tracer_provider.force_flush(timeout_millis=5000)
        _tracer_provider.shutdown()
    except Exception as e:
        logger.warning(f"Error during tracing shutdown: {e}")
    finally:
        _tracer_provider = None
