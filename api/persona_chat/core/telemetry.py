"""
Telemetry module for OpenTelemetry tracing.

Configures distributed tracing for the chat pipeline stages.
"""

import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

logger = logging.getLogger(__name__)

SERVICE_NAME = "persona-chat"

_tracer: trace.Tracer | None = None


def setup_telemetry(console_export: bool = False) -> None:
    """
    Initialize OpenTelemetry with an optional console span exporter.

    Args:
        console_export: Print finished spans to stdout (local debugging).
                        When False, spans are recorded but not exported.
    """
    global _tracer

    resource = Resource.create({"service.name": SERVICE_NAME})
    provider = TracerProvider(resource=resource)

    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("Console span export enabled.")
    else:
        logger.info("Span export disabled.")

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(SERVICE_NAME)


def get_tracer() -> trace.Tracer:
    """Return the application tracer, initializing a no-op if not set up."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer(SERVICE_NAME)
    return _tracer
