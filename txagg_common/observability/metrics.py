"""
Prometheus collectors under the ``txagg`` namespace.

The factories return the already-registered collector when a module
defining metrics is imported a second time (test reloads, several app
instances in one process) instead of failing on a duplicate name.
"""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

NAMESPACE = "txagg"


def _get_or_create(metric_cls, name, documentation, **kwargs):
    # _names_to_collectors also indexes suffixed sample names such as *_total
    registered = REGISTRY._names_to_collectors.get(f"{NAMESPACE}_{name}")
    if registered is None:
        registered = metric_cls(name, documentation, namespace=NAMESPACE, **kwargs)
    return registered


def create_counter(name: str, documentation: str, labelnames: list[str] = None) -> Counter:
    return _get_or_create(Counter, name, documentation, labelnames=labelnames or ())


def create_gauge(name: str, documentation: str, labelnames: list[str] = None) -> Gauge:
    return _get_or_create(Gauge, name, documentation, labelnames=labelnames or ())


def create_histogram(
    name: str,
    documentation: str,
    buckets: list[float] = None,
    labelnames: list[str] = None,
) -> Histogram:
    """Histogram with the client's default buckets unless ``buckets`` is given."""
    extra = {"buckets": buckets} if buckets else {}
    return _get_or_create(Histogram, name, documentation, labelnames=labelnames or (), **extra)


def create_service_info(service_name: str, version: str, environment: str | None = None) -> Info:
    """Publish ``txagg_service_info{service, version, environment} 1``.

    ``environment`` falls back to ``$ENVIRONMENT``, then ``"development"``.
    """
    info = _get_or_create(Info, "service", "Running service and build")
    info.info(
        {
            "service": service_name,
            "version": version,
            "environment": environment or os.environ.get("ENVIRONMENT", "development"),
        }
    )
    return info


def metrics_response() -> tuple[bytes, str]:
    """Exposition body of the default registry and its content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
