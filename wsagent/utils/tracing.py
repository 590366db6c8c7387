"""OpenTelemetry tracing configuration.

Tracing is opt-in. When enabled, spans are exported over OTLP/HTTP and the
web framework, httpx (which carries the Bedrock requests) and botocore are
auto-instrumented. Turn and tool spans are created by the agent loop.
"""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.botocore import BotocoreInstrumentor
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from pydantic import BaseModel

from wsagent.utils.logging import get_logger

logger = get_logger(__name__)


class TracingConfig(BaseModel):
    """Tracing configuration."""

    enabled: bool = False
    service_name: str = "bedrock-ws-agent"
    otlp_endpoint: str = "http://localhost:4318"
    aws_region: str = "us-east-1"


_provider: TracerProvider | None = None


def create_tracer_provider(config: TracingConfig, exporter: SpanExporter | None = None) -> TracerProvider:
    """Build a tracer provider that batches spans to ``exporter``.

    Args:
        config: Tracing configuration
        exporter: Span exporter, OTLP/HTTP to ``config.otlp_endpoint`` if omitted

    Returns:
        Tracer provider with the service resource attached
    """
    resource = Resource.create(
        {
            SERVICE_NAME: config.service_name,
            "cloud.provider": "aws",
            "cloud.region": config.aws_region,
        }
    )
    if exporter is None:
        exporter = OTLPSpanExporter(endpoint=f"{config.otlp_endpoint.rstrip('/')}/v1/traces")

    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def setup_tracing(config: TracingConfig, app: FastAPI | None = None) -> TracerProvider | None:
    """Install the global tracer provider and instrument client libraries.

    Safe to call more than once; the provider and client instrumentation are
    only installed on the first call.

    Args:
        config: Tracing configuration
        app: FastAPI application to instrument, if any

    Returns:
        The installed provider, or None when tracing is disabled
    """
    global _provider
    if not config.enabled:
        logger.debug("Tracing disabled")
        return None

    if _provider is None:
        _provider = create_tracer_provider(config)
        trace.set_tracer_provider(_provider)
        HTTPXClientInstrumentor().instrument()
        BotocoreInstrumentor().instrument()
        logger.info(f"Tracing enabled for {config.service_name}, exporting to {config.otlp_endpoint}")

    if app is not None:
        FastAPIInstrumentor.instrument_app(app)
    return _provider


def flush_tracing() -> None:
    """Export pending spans, e.g. before a Lambda container is frozen."""
    if _provider is not None:
        _provider.force_flush()


def shutdown_tracing() -> None:
    global _provider
    if _provider is None:
        return
    _provider.shutdown()
    _provider = None
    logger.info("Tracing shut down")
