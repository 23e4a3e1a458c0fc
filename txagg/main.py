import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from txagg_common.observability import init_observability, get_logger, shutdown_tracing

from txagg import SERVICE_NAME, __version__, telemetry
from txagg.aggregator import build_aggregator, start_ingestion
from txagg.config import Settings
from txagg.database import TransactionStore
from txagg.ledger_client import LedgerClient, build_ledger_client
from txagg.query_service import QueryService
from txagg.routes import health_router, transactions_router

# Bootstrap logging + tracing + service-info in one call
init_observability(SERVICE_NAME, __version__, log_level=os.environ.get("LOG_LEVEL", "INFO"))

logger = get_logger(SERVICE_NAME)

_SHUTDOWN_JOIN_SECONDS = 30.0


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[TransactionStore] = None,
    ledger_client: Optional[LedgerClient] = None,
) -> FastAPI:
    """Build the API app.

    The store is opened in the lifespan and shared by the query routes and
    the ingestion thread. Ingestion runs when ``ledger_client`` is given or
    ``settings.rpc_url`` is set.
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.store = store or TransactionStore(settings.database_path)
        app.state.store.init_schema(reset=settings.db_reset_on_start)
        app.state.query_service = QueryService(app.state.store)
        logger.info("Database initialized at %s", app.state.store.db_path)

        client = ledger_client
        owns_client = False
        if client is None and settings.rpc_url:
            client = build_ledger_client(settings)
            owns_client = True

        thread = None
        if client is not None:
            app.state.aggregator = build_aggregator(settings, client, app.state.store)
            thread = start_ingestion(app.state.aggregator)
        else:
            logger.info("Ingestion disabled (LEDGER_RPC_URL not set)")

        yield

        if thread is not None:
            app.state.aggregator.request_stop()
            thread.join(timeout=_SHUTDOWN_JOIN_SECONDS)
            if thread.is_alive():
                logger.warning("Ingestion thread still running at shutdown")
            else:
                logger.info("Ingestion thread stopped")
        if owns_client:
            client.close()

        shutdown_tracing()

    app = FastAPI(
        title="Solana Transaction Aggregator",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.aggregator = None

    app.include_router(transactions_router)
    app.include_router(health_router)

    try:
        telemetry.init(app)
    except Exception as e:
        logger.warning("Telemetry init skipped: %s", e)

    return app


app = create_app()
