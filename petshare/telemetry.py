"""OpenTelemetry tracing for remote calls and mutation runs.

``api.AsyncBackendClient`` opens a ``remote.<operation>`` span per HTTP call
and ``mutations.Mutation`` a ``mutation.<name>`` span per run, so a click can
be followed from the mutation down to the store requests it made. Until
``initialize_telemetry()`` installs a provider those spans are no-ops.

Environment Variables:
    - OTEL_SERVICE_NAME: Service name for traces (default: "petshare")
    - ENABLE_TRACING / OTLP_ENDPOINT: see ``petshare.config``
"""

from __future__ import annotations

import os
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.trace import Status, StatusCode, Tracer
from opentelemetry.trace.span import Span

from petshare import __version__
from petshare.config import Settings, settings
from petshare.logging import logger

_provider: TracerProvider | None = None


def _exporter(config: Settings) -> SpanExporter:
    if not config.otlp_endpoint:
        return ConsoleSpanExporter()
    try:
        return OTLPSpanExporter(endpoint=config.otlp_endpoint)
    except Exception as e:
        raise ValueError(f"Invalid OTLP endpoint: {config.otlp_endpoint}") from e


def initialize_telemetry(config: Settings | None = None) -> bool:
    """Install the global tracer provider once per process.

    Page sessions call this on start; later calls are no-ops.

    Returns:
        True when tracing is active

    Raises:
        ValueError: If the OTLP endpoint is invalid
    """
    global _provider

    config = config or settings
    if _provider is not None:
        return True
    if not config.enable_tracing:
        return False

    service_name = os.getenv("OTEL_SERVICE_NAME", "petshare")
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": service_name,
                "service.version": __version__,
                "deployment.environment": config.environment.value,
            }
        )
    )
    provider.add_span_processor(BatchSpanProcessor(_exporter(config)))
    trace.set_tracer_provider(provider)
    _provider = provider

    logger.info(f"Tracing {service_name} to {config.otlp_endpoint or 'console'}")
    return True


def get_tracer(name: str) -> Tracer:
    """Tracer for a module; resolves to the installed provider once there is one."""
    return trace.get_tracer(name)


def add_span_attributes(span: Span, attributes: dict[str, Any]) -> None:
    """Set attributes, skipping None and stringifying containers."""
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, (list, dict, tuple)):
            value = str(value)
        span.set_attribute(key, value)


def set_span_error(span: Span, description: str) -> None:
    """Mark a span failed for a store error that is returned, not raised."""
    span.set_status(Status(StatusCode.ERROR, description))


def record_exception_in_span(span: Span, exception: Exception) -> None:
    span.record_exception(exception)
    span.set_status(Status(StatusCode.ERROR, str(exception)))


__all__ = [
    "initialize_telemetry",
    "get_tracer",
    "add_span_attributes",
    "set_span_error",
    "record_exception_in_span",
]
