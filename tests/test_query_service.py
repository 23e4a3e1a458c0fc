from datetime import datetime

import pytest

from txagg.errors import InvalidFilter
from txagg.query_service import QueryService, parse_date_literal
from txagg.records import TransactionFilters, TransactionRecord


class TestParseDateLiteral:
    def test_quoted_literal(self):
        assert parse_date_literal("start_date", '"2023-01-01 00:00:00"') == datetime(2023, 1, 1)

    def test_bare_literal(self):
        assert parse_date_literal("end_date", "2023-01-31 23:59:59") == datetime(2023, 1, 31, 23, 59, 59)

    @pytest.mark.parametrize(
        "value",
        ["", '""', "2023-01-01", "2023-13-01 00:00:00", "yesterday", '"2023-01-01T00:00:00"'],
    )
    def test_malformed_values(self, value):
        with pytest.raises(InvalidFilter) as excinfo:
            parse_date_literal("start_date", value)
        assert excinfo.value.parameter == "start_date"
        assert "YYYY-MM-DD HH:MM:SS" in excinfo.value.message


class TestQueryService:
    def test_build_filters(self, store):
        filters = QueryService(store).build_filters(
            {
                "start_date": '"2023-01-01 00:00:00"',
                "end_date": None,
                "sender": "A",
                "page": "2",
            }
        )
        assert filters == TransactionFilters(start=datetime(2023, 1, 1), sender="A")

    def test_no_params_is_unfiltered(self, store):
        assert QueryService(store).build_filters({}) == TransactionFilters()

    def test_handle_returns_matching_records(self, store):
        store.upsert(TransactionRecord("SIG1", 100, datetime(2023, 1, 5, 10), "A", "B", 1, None))
        store.upsert(TransactionRecord("SIG2", 101, datetime(2023, 2, 5, 10), "C", "B", 1, None))

        records = QueryService(store).handle({"receiver": "B", "sender": "C"})

        assert [r.signature for r in records] == ["SIG2"]

    def test_handle_rejects_bad_dates_before_querying(self):
        class ExplodingStore:
            def query(self, filters):
                raise AssertionError("store must not be queried")

        with pytest.raises(InvalidFilter):
            QueryService(ExplodingStore()).handle({"end_date": "not a date"})

    def test_handle_never_moves_the_watermark(self, store):
        store.set_watermark(7)
        QueryService(store).handle({})
        assert store.get_watermark() == 7
