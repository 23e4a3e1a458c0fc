"""OpenTelemetry tracer-provider lifecycle (OTLP over HTTP)."""

import logging
import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger(__name__)

DEFAULT_COLLECTOR = "http://localhost:4318"
TRACES_PATH = "/v1/traces"


def _traces_url(endpoint: str) -> str:
    endpoint = endpoint.rstrip("/")
    return endpoint if endpoint.endswith(TRACES_PATH) else endpoint + TRACES_PATH


def init_tracing(service_name: str, version: str | None = None, endpoint: str | None = None) -> None:
    """Make a batching OTLP exporter the global span sink.

    Args:
        service_name: ``service.name`` resource attribute.
        version: Optional ``service.version`` resource attribute.
        endpoint: Collector base URL or full traces URL; defaults to
            ``$OTEL_EXPORTER_OTLP_ENDPOINT``, then the local collector.
    """
    url = _traces_url(endpoint or os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT") or DEFAULT_COLLECTOR)

    resource = {"service.name": service_name}
    if version:
        resource["service.version"] = version

    provider = TracerProvider(resource=Resource.create(resource))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=url)))
    trace.set_tracer_provider(provider)
    logger.info("Exporting %s spans to %s", service_name, url)


def shutdown_tracing() -> None:
    """Flush pending spans. A no-op when no SDK provider is installed."""
    provider = trace.get_tracer_provider()
    shutdown = getattr(provider, "shutdown", None)
    if shutdown is None:
        return
    try:
        shutdown()
    except Exception as exc:
        logger.warning("Span flush on shutdown failed: %s", exc)
