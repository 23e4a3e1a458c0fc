"""
Observability plumbing shared by the API process and the ingest CLI.

``init_observability`` is the only call a process needs at startup: it
installs JSON logging on the root logger, turns on OTLP tracing when a
collector endpoint is configured, and publishes the ``txagg_service_info``
metric. The submodules stay importable on their own for tests.
"""

import logging as _logging
import os as _os

from .logging import JsonTraceFormatter, get_logger, setup_logging
from .metrics import (
    create_counter,
    create_gauge,
    create_histogram,
    create_service_info,
    metrics_response,
)
from .middleware import MetricsMiddleware
from .tracing import init_tracing, shutdown_tracing

OTLP_ENDPOINT_ENV = "OTEL_EXPORTER_OTLP_ENDPOINT"

_initialized = False


def init_observability(
    service_name: str,
    version: str,
    *,
    log_level: int | str = _logging.INFO,
    environment: str | None = None,
) -> None:
    """Configure logging, tracing and the service-info metric for a process.

    A tracing setup failure is logged as a warning; the process keeps
    running without spans being exported. Calls after the first do nothing.

    Args:
        service_name: Stamped on log lines, spans and the info metric.
        version: Reported as ``service.version`` and in the info metric.
        log_level: Root level, as a ``logging`` constant or a level name.
        environment: Info-metric label; ``$ENVIRONMENT`` when omitted.
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    setup_logging(log_level, service=service_name)
    log = get_logger(service_name)

    if not _os.environ.get(OTLP_ENDPOINT_ENV):
        log.info("No %s configured, spans are not exported", OTLP_ENDPOINT_ENV)
    else:
        try:
            init_tracing(service_name, version)
        except Exception as exc:
            log.warning("Could not start tracing for %s: %s", service_name, exc)

    create_service_info(service_name, version, environment)
    log.info("%s %s starting", service_name, version)


__all__ = [
    "init_observability",
    "JsonTraceFormatter",
    "get_logger",
    "setup_logging",
    "create_counter",
    "create_gauge",
    "create_histogram",
    "create_service_info",
    "metrics_response",
    "MetricsMiddleware",
    "init_tracing",
    "shutdown_tracing",
]
