"""
Distributed tracing setup with OpenTelemetry, exported over OTLP/HTTP.
"""
import logging
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from mappalette_gateway.config import OTLP_ENDPOINT, TRACING_ENABLED

logger = logging.getLogger(__name__)


def init_tracing(service_name: str = "mappalette-gateway") -> bool:
    """
    Initialize OpenTelemetry tracing with an OTLP exporter.

    Returns False without touching the global provider when tracing is
    disabled.
    """
    if not TRACING_ENABLED:
        logger.info("Tracing disabled")
        return False

    try:
        resource = Resource(attributes={SERVICE_NAME: service_name})
        trace_provider = TracerProvider(resource=resource)
        trace_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=OTLP_ENDPOINT))
        )
        trace.set_tracer_provider(trace_provider)
        logger.info(f"OTLP tracing initialized: {OTLP_ENDPOINT}")
    except Exception as e:
        logger.error(f"Failed to initialize tracing: {e}")
        raise
    return True


def instrument_app(app):
    """
    Instrument the FastAPI app and its outbound clients.

    Args:
        app: FastAPI application instance
    """
    try:
        FastAPIInstrumentor.instrument_app(app)
        # Profile service calls
        HTTPXClientInstrumentor().instrument()
        # Shared counter store
        RedisInstrumentor().instrument()
        logger.info("OpenTelemetry instrumentation complete")
    except Exception as e:
        logger.error(f"Failed to instrument app: {e}")
        raise
