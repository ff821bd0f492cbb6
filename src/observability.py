"""
Observability and monitoring setup for the face match microservice.
"""

import asyncio
from typing import Optional, Dict, Any, Callable
from functools import wraps

import structlog
from opentelemetry import trace, metrics
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor

logger = structlog.get_logger()

# Global tracer and meter
tracer: Optional[trace.Tracer] = None
meter: Optional[metrics.Meter] = None

# Metrics instruments
request_duration: Optional[metrics.Histogram] = None
face_match_counter: Optional[metrics.Counter] = None
verification_counter: Optional[metrics.Counter] = None
similarity_histogram: Optional[metrics.Histogram] = None


def setup_observability(
    service_name: str = "face-match-microservice",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    enable_console_export: bool = False
) -> None:
    """
    Set up OpenTelemetry tracing and metrics.

    Args:
        service_name: Name of the service for tracing
        service_version: Version of the service
        otlp_endpoint: OTLP endpoint for trace/metric export
        enable_console_export: Whether to enable console export for development
    """
    global tracer, meter
    global request_duration, face_match_counter, verification_counter, similarity_histogram

    logger.info(
        "Setting up observability",
        service_name=service_name,
        service_version=service_version,
        otlp_endpoint=otlp_endpoint
    )

    resource = Resource.create({
        "service.name": service_name,
        "service.version": service_version,
    })

    # Set up tracing
    trace_provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))

    if enable_console_export:
        trace_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer(__name__)

    # Set up metrics
    metric_readers = []

    if otlp_endpoint:
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=OTLPMetricExporter(endpoint=otlp_endpoint),
                export_interval_millis=30000  # 30 seconds
            )
        )

    if enable_console_export:
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=ConsoleMetricExporter(),
                export_interval_millis=60000  # 60 seconds
            )
        )

    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=metric_readers))
    meter = metrics.get_meter(__name__)

    request_duration = meter.create_histogram(
        name="face_match_operation_duration_seconds",
        description="Face matching operation duration in seconds",
        unit="s"
    )

    face_match_counter = meter.create_counter(
        name="face_match_searches_total",
        description="Total number of find-by-face searches",
        unit="1"
    )

    verification_counter = meter.create_counter(
        name="face_verifications_total",
        description="Total number of identity verifications",
        unit="1"
    )

    similarity_histogram = meter.create_histogram(
        name="face_similarity_score",
        description="Cosine similarity scores of matches and verifications",
        unit="1"
    )

    logger.info("Observability setup completed")


def instrument_fastapi_app(app) -> None:
    """
    Instrument FastAPI application with OpenTelemetry.

    Must run before the application starts serving, since it adds middleware.

    Args:
        app: FastAPI application instance
    """
    FastAPIInstrumentor.instrument_app(app)
    LoggingInstrumentor().instrument(set_logging_format=False)

    logger.info("FastAPI application instrumented with OpenTelemetry")


def trace_function(operation_name: Optional[str] = None):
    """
    Decorator to trace function execution.

    Args:
        operation_name: Optional custom operation name for the span
    """
    def decorator(func: Callable) -> Callable:
        def start_span():
            span_name = operation_name or f"{func.__module__}.{func.__name__}"
            return tracer.start_as_current_span(span_name)

        def annotate_failure(span, e: Exception) -> None:
            span.record_exception(e)
            span.set_attribute("success", False)
            span.set_attribute("error.type", type(e).__name__)
            span.set_attribute("error.message", str(e))

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            if tracer is None:
                return await func(*args, **kwargs)

            with start_span() as span:
                span.set_attribute("function.name", func.__name__)
                span.set_attribute("function.module", func.__module__)
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    annotate_failure(span, e)
                    raise
                span.set_attribute("success", True)
                return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            if tracer is None:
                return func(*args, **kwargs)

            with start_span() as span:
                span.set_attribute("function.name", func.__name__)
                span.set_attribute("function.module", func.__module__)
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    annotate_failure(span, e)
                    raise
                span.set_attribute("success", True)
                return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def record_match_metrics(
    matched: bool,
    processing_time: float,
    similarity_score: Optional[float],
    candidates_evaluated: int
) -> None:
    """
    Record metrics for find-by-face searches.

    Args:
        matched: Whether a patient met the threshold
        processing_time: Time taken for the search in seconds
        similarity_score: Best match similarity, if any
        candidates_evaluated: Number of candidates actually scored
    """
    if face_match_counter is None or request_duration is None:
        return

    attributes = {
        "operation": "find_by_face",
        "matched": str(matched).lower()
    }

    face_match_counter.add(1, attributes)
    request_duration.record(processing_time, attributes)

    if matched and similarity_score is not None and similarity_histogram is not None:
        similarity_histogram.record(similarity_score, attributes)

    logger.debug(
        "Match metrics recorded",
        matched=matched,
        processing_time=processing_time,
        similarity_score=similarity_score,
        candidates_evaluated=candidates_evaluated
    )


def record_verification_metrics(
    verified: bool,
    processing_time: float,
    similarity_score: Optional[float],
    outcome: str
) -> None:
    """
    Record metrics for identity verifications.

    Args:
        verified: Whether verification was successful
        processing_time: Time taken for verification in seconds
        similarity_score: Similarity score (if one was computed)
        outcome: "verified", "rejected" or the error type that ended the request
    """
    if verification_counter is None or request_duration is None:
        return

    attributes = {
        "operation": "verify_identity",
        "verified": str(verified).lower(),
        "outcome": outcome
    }

    verification_counter.add(1, attributes)
    request_duration.record(processing_time, attributes)

    if similarity_score is not None and similarity_histogram is not None:
        similarity_histogram.record(similarity_score, attributes)

    logger.debug(
        "Verification metrics recorded",
        verified=verified,
        processing_time=processing_time,
        similarity_score=similarity_score,
        outcome=outcome
    )


def get_trace_context() -> Dict[str, Any]:
    """
    Get current trace context information.

    Returns:
        Dict with trace ID and span ID if available
    """
    current_span = trace.get_current_span()
    if current_span is None or not current_span.is_recording():
        return {}

    span_context = current_span.get_span_context()
    return {
        "trace_id": f"{span_context.trace_id:032x}",
        "span_id": f"{span_context.span_id:016x}"
    }

