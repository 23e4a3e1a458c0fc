"""
Command-line entry points.

    python -m txagg serve    # API + background ingestion
    python -m txagg ingest   # ingestion only, in the foreground
"""

import argparse
import dataclasses
import os

import uvicorn

from txagg_common.observability import init_observability, get_logger

from txagg import SERVICE_NAME, __version__
from txagg.aggregator import build_aggregator, start_ingestion
from txagg.config import Settings
from txagg.database import TransactionStore
from txagg.errors import ConfigurationError
from txagg.ledger_client import build_ledger_client

init_observability(SERVICE_NAME, __version__, log_level=os.environ.get("LOG_LEVEL", "INFO"))

logger = get_logger(SERVICE_NAME)


def _serve(settings: Settings, args: argparse.Namespace) -> int:
    # txagg.main builds its app from the environment on import
    from txagg.main import create_app

    host = args.host or settings.api_host
    port = args.port or settings.api_port
    logger.info("Serving %s on %s:%d", SERVICE_NAME, host, port)
    # log_config=None keeps the JSON root handler for uvicorn's loggers
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)
    return 0


def _ingest(settings: Settings, args: argparse.Namespace) -> int:
    if not settings.rpc_url:
        raise ConfigurationError("LEDGER_RPC_URL must be set to ingest")
    if args.budget is not None:
        settings = dataclasses.replace(settings, iteration_budget=args.budget)

    store = TransactionStore(settings.database_path)
    store.init_schema(reset=settings.db_reset_on_start)
    client = build_ledger_client(settings)
    aggregator = build_aggregator(settings, client, store)

    thread = start_ingestion(aggregator)
    try:
        while thread.is_alive():
            thread.join(timeout=0.5)
    except KeyboardInterrupt:
        logger.info("Interrupt received, stopping after the current slot")
        aggregator.request_stop()
        thread.join()
    finally:
        client.close()

    stats = aggregator.stats
    logger.info(
        "Ingestion finished in state %s: %d slots, %d inserted, %d merged, %d skipped, %d conflicts",
        aggregator.state.value,
        stats.iterations,
        stats.records_inserted,
        stats.records_merged,
        stats.slots_skipped + stats.slots_abandoned,
        stats.conflicts,
    )
    return 1 if aggregator.error is not None else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="txagg", description="Solana transaction aggregator")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the query API with background ingestion")
    serve.add_argument("--host", default=None, help="Bind address (default: $API_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: $API_PORT)")

    ingest = commands.add_parser("ingest", help="Run the ingestion loop in the foreground")
    ingest.add_argument(
        "--budget",
        type=int,
        default=None,
        help="Slots to persist before exiting (default: $INGEST_ITERATION_BUDGET)",
    )

    args = parser.parse_args(argv)
    try:
        settings = Settings.from_env()
        if args.command == "serve":
            return _serve(settings, args)
        return _ingest(settings, args)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 2
