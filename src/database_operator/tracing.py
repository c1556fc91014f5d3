"""OpenTelemetry tracing support for the Database Operator."""

from __future__ import annotations

import logging
import os
import traceback
from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Tracer

from .utils.errors import sanitize_error_message, sanitize_exception

logger = logging.getLogger(__name__)

# Global tracer instance
_tracer: Tracer | None = None


def initialize_tracing(service_name: str = "database-operator") -> None:
    """Initialize OpenTelemetry tracing.

    Args:
        service_name: Name of the service for tracing

    Environment Variables:
        OTEL_EXPORTER_OTLP_ENDPOINT: OTLP endpoint URL (default: http://localhost:4317)
        OTEL_SERVICE_NAME: Service name (default: database-operator)
        OTEL_TRACES_ENABLED: Enable/disable tracing (default: true)
    """
    global _tracer

    if os.getenv("OTEL_TRACES_ENABLED", "true").lower() == "false":
        return

    try:
        service_name = os.getenv("OTEL_SERVICE_NAME", service_name)
        endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")

        resource = Resource.create({
            "service.name": service_name,
            "service.version": os.getenv("OTEL_SERVICE_VERSION", "unknown"),
        })

        provider = TracerProvider(resource=resource)
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)

        _tracer = trace.get_tracer(service_name)
    except Exception as e:
        # Tracing is optional; the operator keeps running without it
        logger.warning(f"Failed to initialize tracing: {e}")


def get_tracer() -> Tracer | None:
    """Get the global tracer instance, or None when tracing is off."""
    return _tracer


@contextmanager
def trace_span(
    name: str,
    kind: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> Iterator[Span | None]:
    """Context manager for creating a trace span.

    Args:
        name: Name of the span
        kind: Resource kind (e.g., "Database", "Backup")
        attributes: Additional span attributes

    Yields:
        Span object or None if tracing is not initialized
    """
    tracer = get_tracer()
    if tracer is None:
        yield None
        return

    attrs = dict(attributes or {})
    if kind:
        attrs["resource.kind"] = kind

    with tracer.start_as_current_span(
        name, attributes=attrs, record_exception=False, set_status_on_exception=False
    ) as span:
        try:
            yield span
        except Exception as e:
            if span.is_recording():
                # Store errors can quote connection strings and env values
                message = sanitize_exception(e)
                stacktrace = "".join(traceback.format_exception(type(e), e, e.__traceback__))
                span.record_exception(
                    e,
                    attributes={
                        "exception.message": message,
                        "exception.stacktrace": sanitize_error_message(stacktrace),
                    },
                )
                span.set_status(trace.Status(trace.StatusCode.ERROR, message))
            raise


def annotate_resource(body: dict[str, Any]) -> None:
    """Attach the phase and generations of a resource to the current span."""
    span = trace.get_current_span()
    if not span or not span.is_recording():
        return
    meta = body.get("metadata", {})
    status = body.get("status") or {}
    for attribute, value in (
        ("resource.uid", meta.get("uid")),
        ("resource.phase", status.get("phase")),
        ("resource.generation", meta.get("generation")),
        ("resource.observed_generation", status.get("observedGeneration")),
    ):
        if value is not None:
            span.set_attribute(attribute, value)


def set_span_status(ok: bool, description: str | None = None) -> None:
    """Set the status of the current span."""
    span = trace.get_current_span()
    if span and span.is_recording():
        span.set_status(
            trace.Status(trace.StatusCode.OK if ok else trace.StatusCode.ERROR, description)
        )
