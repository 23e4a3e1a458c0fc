"""
Service-specific telemetry for the aggregator.

Domain metrics and FastAPI instrumentation that sit on top of the
shared ``txagg_common.observability`` module.
"""

import logging

from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from txagg_common.observability import (
    create_counter,
    create_gauge,
    create_histogram,
    MetricsMiddleware,
)

logger = logging.getLogger("telemetry")

# ── Ingestion ────────────────────────────────────────────────────

SLOTS_PROCESSED = create_counter(
    "slots_processed_total",
    "Slots whose block was fetched, parsed and persisted",
)

SLOTS_SKIPPED = create_counter(
    "slots_skipped_total",
    "Slots passed over, by reason",
    ["reason"],
)

UPSTREAM_RETRIES = create_counter(
    "upstream_retries_total",
    "Block fetch retries after a transient upstream failure, by error type",
    ["error"],
)

RECORDS_UPSERTED = create_counter(
    "records_upserted_total",
    "Transaction upserts by outcome",
    ["outcome"],
)

DATA_CONFLICTS = create_counter(
    "data_conflicts_total",
    "Upserts rejected because they contradicted a stored value",
)

SLOT_WATERMARK = create_gauge(
    "slot_watermark",
    "Highest slot fully processed and persisted",
)

BLOCK_FETCH_DURATION = create_histogram(
    "block_fetch_duration_seconds",
    "Latency of a single getBlock call",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# ── HTTP ─────────────────────────────────────────────────────────

HTTP_REQUESTS = create_counter(
    "http_requests_total",
    "Total HTTP requests by method and path",
    ["method", "path", "status"],
)

HTTP_LATENCY = create_histogram(
    "http_request_duration_seconds",
    "HTTP request latency by method and path",
    labelnames=["method", "path"],
)


# ── Initialization ───────────────────────────────────────────────

def init(app):
    """Wire service telemetry into the FastAPI app.

    * Adds the HTTP-metrics middleware.
    * Instruments FastAPI with OpenTelemetry auto-instrumentation.
    """
    app.add_middleware(
        MetricsMiddleware,
        counter=HTTP_REQUESTS,
        latency=HTTP_LATENCY,
        ignored_paths={"/metrics"},
    )

    try:
        FastAPIInstrumentor.instrument_app(app)
        logger.info("FastAPI instrumentation enabled")
    except Exception as e:
        logger.warning("FastAPI instrumentation failed: %s", e)
