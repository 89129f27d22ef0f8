"""
Observability configuration for the back-office core.

Configures structlog for structured logging and OpenTelemetry tracing.
Console export is used for development; when an OTLP endpoint is given
spans are shipped to Jaeger/Zipkin/cloud collectors instead.
"""

import logging
import os
import sys

import structlog
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from retail_backoffice.config import BackofficeSettings

logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog to write event-style logs to stderr.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render JSON lines when True, human-readable console
            output otherwise
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def configure_tracing(
    service_name: str = "retail-backoffice",
    environment: str = "development",
    otlp_endpoint: str | None = None,
):
    """
    Configure OpenTelemetry tracing.

    Args:
        service_name: Name of the service for telemetry identification
        environment: Deployment environment (development, staging, production)
        otlp_endpoint: OTLP gRPC endpoint (e.g., 'localhost:4317' for Jaeger).
                      If None, uses environment variable OTLP_ENDPOINT or
                      defaults to console export.

    Returns:
        Tracer for creating spans
    """
    otlp_endpoint = otlp_endpoint or os.getenv("OTLP_ENDPOINT")

    resource = Resource.create(
        {
            "service.name": service_name,
            "deployment.environment": environment,
        }
    )
    provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        logger.info("configuring_otlp_tracing", endpoint=otlp_endpoint)
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
    else:
        logger.info("configuring_console_tracing", environment=environment)
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    return trace.get_tracer(service_name)


def configure_from_settings(settings: BackofficeSettings, *, tracing: bool = False) -> None:
    """Apply logging (and optionally tracing) from a settings object."""
    configure_logging(settings.log_level, json_output=settings.log_json)
    if tracing or settings.otlp_endpoint:
        configure_tracing(
            service_name=settings.service_name, otlp_endpoint=settings.otlp_endpoint
        )
    logger.debug(
        "observability_configured",
        service_name=settings.service_name,
        log_level=settings.log_level,
        otlp_enabled=settings.otlp_endpoint is not None,
    )
