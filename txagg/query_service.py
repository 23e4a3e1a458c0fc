"""
Query service: request parameters to store filters.

Date parameters use the literal form ``"YYYY-MM-DD HH:MM:SS"`` with the
double quotes included; bare values are accepted as well. Parameters
the service does not know are ignored.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Mapping, Optional

from txagg.database import TransactionStore
from txagg.errors import InvalidFilter
from txagg.records import BLOCK_TIME_FORMAT, TransactionFilters, TransactionRecord

logger = logging.getLogger("query_service")

FILTER_PARAMETERS = ("start_date", "end_date", "signature", "sender", "receiver")


def parse_date_literal(name: str, value: str) -> datetime:
    """Parse a ``start_date``/``end_date`` value.

    Raises:
        InvalidFilter: If the value does not match ``"%Y-%m-%d %H:%M:%S"``.
    """
    literal = value.strip()
    if len(literal) >= 2 and literal[0] == literal[-1] == '"':
        literal = literal[1:-1]
    try:
        return datetime.strptime(literal, BLOCK_TIME_FORMAT)
    except ValueError as exc:
        raise InvalidFilter(
            name,
            f'Invalid {name} {value!r}: expected "YYYY-MM-DD HH:MM:SS"',
        ) from exc


class QueryService:
    """Read-only access to stored transactions for the HTTP layer."""

    def __init__(self, store: TransactionStore) -> None:
        self.store = store

    def build_filters(self, params: Mapping[str, Optional[str]]) -> TransactionFilters:
        start = params.get("start_date")
        end = params.get("end_date")
        return TransactionFilters(
            start=parse_date_literal("start_date", start) if start is not None else None,
            end=parse_date_literal("end_date", end) if end is not None else None,
            signature=params.get("signature"),
            sender=params.get("sender"),
            receiver=params.get("receiver"),
        )

    def handle(self, params: Mapping[str, Optional[str]]) -> list[TransactionRecord]:
        """Records matching every supplied filter, ascending by block time.

        Raises:
            InvalidFilter: A date parameter is malformed.
            StoreUnavailable: The store could not be read.
        """
        filters = self.build_filters(params)
        records = self.store.query(filters)
        logger.debug("Query %s matched %d records", filters, len(records))
        return records
