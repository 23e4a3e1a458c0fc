"""Span capture and metric reads for the test suite."""

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from prometheus_client import REGISTRY


def setup_test_tracing(service_name: str = "test-service") -> InMemorySpanExporter:
    """Route all spans to a fresh in-memory exporter and return it.

    The API only lets the global provider be set once per process, so the
    guard is reset here to give each test its own exporter.
    """
    spans = InMemorySpanExporter()
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(SimpleSpanProcessor(spans))

    trace._TRACER_PROVIDER = None
    trace._TRACER_PROVIDER_SET_ONCE._done = False
    trace.set_tracer_provider(provider)
    return spans


def get_spans_by_name(exporter: InMemorySpanExporter, name: str) -> list[ReadableSpan]:
    return [span for span in exporter.get_finished_spans() if span.name == name]


def sample_value(name: str, labels: dict[str, str] | None = None) -> float:
    """Current value of a sample in the default registry, ``0.0`` if unset."""
    value = REGISTRY.get_sample_value(name, labels or {})
    return 0.0 if value is None else value
