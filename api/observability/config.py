"""
OpenTelemetry Configuration

Sets up tracing and logging for the permit portal API. Tracing is off when
``OTEL_ENABLED`` is false; logging is always configured.
"""

import os
import logging
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

SERVICE_NAME = 'permit-portal-api'

SAMPLING_RATIOS = {
    'production': 0.1,
    'staging': 0.5,
}


def setup_observability() -> bool:
    """
    Initialize OpenTelemetry based on environment configuration.

    Returns:
        True when a tracer provider was installed
    """
    environment = os.getenv('ENVIRONMENT', 'development')
    otel_enabled = os.getenv('OTEL_ENABLED', 'false').lower() == 'true'

    setup_structured_logging(environment)

    if not otel_enabled or environment == 'test':
        return False

    resource = Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": os.getenv('SERVICE_VERSION', '1.0.0'),
        "deployment.environment": environment
    })
    tracer_provider = TracerProvider(
        sampler=TraceIdRatioBased(SAMPLING_RATIOS.get(environment, 1.0)),
        resource=resource
    )

    otlp_endpoint = os.getenv('OTEL_EXPORTER_OTLP_ENDPOINT')
    if otlp_endpoint:
        headers = {}
        if os.getenv('OTEL_API_KEY'):
            headers["Authorization"] = f"Bearer {os.getenv('OTEL_API_KEY')}"
        tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, headers=headers or None),
                               max_export_batch_size=512)
        )
    elif environment == 'development':
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(tracer_provider)
    return True


def setup_structured_logging(environment: str):
    """Configure root logging for the environment."""
    log_level = {
        'production': logging.WARNING,
        'staging': logging.INFO,
        'development': logging.INFO,
        'test': logging.WARNING,
    }.get(environment, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s %(levelname)s %(name)s %(message)s',
        handlers=[logging.StreamHandler()]
    )

    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('pymongo').setLevel(logging.WARNING)

    if environment == 'development':
        logging.getLogger('domain').setLevel(logging.DEBUG)
        logging.getLogger('services').setLevel(logging.DEBUG)
