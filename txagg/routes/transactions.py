import asyncio
import logging

from fastapi import APIRouter, HTTPException, Query, Request

from txagg.errors import InvalidFilter, StoreUnavailable
from txagg.models.transactions import ErrorResponse, TransactionOut
from txagg.query_service import QueryService

logger = logging.getLogger("routes.transactions")

router = APIRouter(tags=["Transactions"])

_DATE_HELP = 'Inclusive bound, "YYYY-MM-DD HH:MM:SS" (quotes included), UTC'


@router.get(
    "/transactions",
    response_model=list[TransactionOut],
    responses={
        400: {"model": ErrorResponse, "description": "Malformed filter value"},
        503: {"model": ErrorResponse, "description": "Store unavailable"},
        504: {"model": ErrorResponse, "description": "Query timed out"},
    },
)
async def list_transactions(
    request: Request,
    start_date: str | None = Query(default=None, description=_DATE_HELP),
    end_date: str | None = Query(default=None, description=_DATE_HELP),
    signature: str | None = Query(default=None),
    sender: str | None = Query(default=None),
    receiver: str | None = Query(default=None),
):
    """
    Stored transactions matching every supplied filter, oldest first.

    Filters combine with AND; omitted filters match everything and
    unknown query parameters are ignored.
    """
    service: QueryService = request.app.state.query_service
    timeout = request.app.state.settings.query_timeout_seconds
    params = {
        "start_date": start_date,
        "end_date": end_date,
        "signature": signature,
        "sender": sender,
        "receiver": receiver,
    }

    try:
        records = await asyncio.wait_for(
            asyncio.to_thread(service.handle, params), timeout=timeout
        )
    except InvalidFilter as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    except StoreUnavailable:
        logger.exception("Store unavailable while serving /transactions")
        raise HTTPException(status_code=503, detail="Transaction store unavailable")
    except asyncio.TimeoutError:
        logger.warning("Query exceeded %.1fs: %s", timeout, params)
        raise HTTPException(status_code=504, detail="Query timed out")

    return [TransactionOut.from_record(record) for record in records]
