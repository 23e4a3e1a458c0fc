from fastapi import APIRouter, Request, Response

from txagg.errors import StoreUnavailable
from txagg.models.health import HealthResponse
from txagg_common.observability import metrics_response

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
def health(request: Request):
    store = request.app.state.store
    aggregator = request.app.state.aggregator

    db_ok = store.check_connection()
    total = 0
    if db_ok:
        try:
            total = store.count()
        except StoreUnavailable:
            db_ok = False

    if aggregator is None:
        ingestion_state, last_slot = "disabled", None
    else:
        ingestion_state, last_slot = aggregator.state.value, aggregator.stats.last_slot

    healthy = db_ok and ingestion_state != "fatal"
    return HealthResponse(
        status="healthy" if healthy else "unhealthy",
        db_connected=db_ok,
        total_records=total,
        ingestion_state=ingestion_state,
        last_slot=last_slot,
    )


@router.get("/metrics")
def metrics():
    body, content_type = metrics_response()
    return Response(content=body, media_type=content_type)
