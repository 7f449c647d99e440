"""
Centralized logging configuration for amqp-poster services.

The library itself only creates module loggers; services built on it call
`setup_logging` once at startup to attach handlers.
"""

import logging
import os
import sys
from typing import Optional

try:
    from opentelemetry._logs import set_logger_provider
    from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
    from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.trace import set_tracer_provider

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False


def setup_logging(
    level: int = logging.INFO,
    microservice_name: Optional[str] = None,
    app_env: Optional[str] = None,
    force_setup: bool = False,
    enable_otel: bool = False,
    enable_console: bool = True,
    otel_endpoint: Optional[str] = None,
) -> None:
    """
    Setup logging configuration with optional OTEL support.

    Args:
        level: Logging level (default: INFO)
        microservice_name: Name of the service using the poster (e.g., 'Responder')
        app_env: Application environment (e.g., 'dev', 'staging', 'prod')
        force_setup: Whether to force reconfiguration even if already setup
        enable_otel: Whether to enable OTEL logging and tracing (default: False)
        enable_console: Whether to enable console logging (default: True)
        otel_endpoint: OTEL collector endpoint (defaults to env var)
    """
    root_logger = logging.getLogger()
    if root_logger.handlers and not force_setup:
        # Logging already configured, just ensure our level is set
        root_logger.setLevel(level)
        return

    if force_setup:
        root_logger.handlers.clear()

    from amqp_poster.config import SERVICE_NAME

    if enable_otel and OTEL_AVAILABLE:
        resource = _build_resource(SERVICE_NAME, microservice_name, app_env)
        _setup_otel_logging(resource, otel_endpoint)
        _setup_otel_tracing(resource, otel_endpoint)

    if enable_console:
        _setup_console_logging(microservice_name)

    root_logger.setLevel(level)

    # amqpstorm logs every frame-level hiccup at INFO
    logging.getLogger("amqpstorm").setLevel(logging.WARNING)

    logging.getLogger("amqp_poster").setLevel(level)


def create_formatter(microservice_name: Optional[str] = None) -> logging.Formatter:
    """
    Create a standardized formatter.

    Args:
        microservice_name: Name of the service for log identification

    Returns:
        Configured logging formatter
    """
    if microservice_name:
        service_prefix = f"[{microservice_name}] "
    else:
        service_prefix = ""

    return logging.Formatter(
        f"%(asctime)s - {service_prefix}%(name)s - %(threadName)s - %(levelname)s - %(message)s"
    )


def _build_resource(
    service_name: str,
    microservice_name: Optional[str] = None,
    app_env: Optional[str] = None,
) -> "Resource":
    resource_attrs = {
        "service.name": service_name,
        "service.instance.id": os.uname().nodename,
    }
    if microservice_name:
        resource_attrs["service.component"] = microservice_name
    if app_env:
        resource_attrs["deployment.environment"] = app_env
    return Resource.create(resource_attrs)


def _setup_otel_logging(resource: "Resource", otel_endpoint: Optional[str] = None) -> None:
    """Export log records through OTLP and attach the handler to the root logger."""
    logger_provider = LoggerProvider(resource=resource)
    set_logger_provider(logger_provider)

    endpoint = otel_endpoint or os.getenv("OTEL_EXPORTER_OTLP_LOGS_ENDPOINT")
    otlp_exporter = OTLPLogExporter(endpoint=endpoint, insecure=True)
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(otlp_exporter))

    handler = LoggingHandler(level=logging.NOTSET, logger_provider=logger_provider)
    logging.getLogger().addHandler(handler)


def _setup_otel_tracing(resource: "Resource", otel_endpoint: Optional[str] = None) -> None:
    """Install an OTLP span exporter as the global tracer provider."""
    tracer_provider = TracerProvider(resource=resource)
    set_tracer_provider(tracer_provider)

    traces_endpoint = (
        otel_endpoint
        or os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    )
    otlp_span_exporter = OTLPSpanExporter(endpoint=traces_endpoint, insecure=True)
    tracer_provider.add_span_processor(BatchSpanProcessor(otlp_span_exporter))


def _setup_console_logging(microservice_name: Optional[str] = None) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(create_formatter(microservice_name))
    logging.getLogger().addHandler(handler)
