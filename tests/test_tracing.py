import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import MagicMock

import requests
from opentelemetry.trace import SpanKind, StatusCode

from txagg.aggregator import Aggregator
from txagg.database import TransactionStore
from txagg.errors import DataConflict, SlotSkipped
from txagg.ledger_client import SolanaRpcClient
from txagg.records import TransactionFilters, TransactionRecord
from txagg_common.observability.testing import get_spans_by_name, setup_test_tracing
from tests.fakes import FakeLedgerClient, make_block, make_tx


class TestStoreTracing(unittest.TestCase):
    def setUp(self):
        self.exporter = setup_test_tracing("tx-aggregator")
        self._tmp = TemporaryDirectory()
        self.store = TransactionStore(Path(self._tmp.name) / "trace.db")
        self.store.init_schema()

    def tearDown(self):
        self._tmp.cleanup()

    def test_upsert_span(self):
        self.store.upsert(TransactionRecord("SIG1", 7, sender="A"))

        spans = get_spans_by_name(self.exporter, "db upsert_transaction")
        self.assertEqual(len(spans), 1)
        span = spans[0]
        self.assertEqual(span.kind, SpanKind.INTERNAL)
        self.assertEqual(span.attributes["db.system"], "sqlite")
        self.assertEqual(span.attributes["ledger.slot"], 7)
        self.assertEqual(span.attributes["db.upsert_outcome"], "inserted")

    def test_conflict_is_recorded_on_span(self):
        self.store.upsert(TransactionRecord("SIG1", 7, sender="A"))
        with self.assertRaises(DataConflict):
            self.store.upsert(TransactionRecord("SIG1", 7, sender="B"))

        span = get_spans_by_name(self.exporter, "db upsert_transaction")[-1]
        self.assertEqual(tuple(span.attributes["db.conflict_fields"]), ("sender",))
        self.assertEqual(span.status.status_code, StatusCode.ERROR)

    def test_query_span(self):
        self.store.upsert(TransactionRecord("SIG1", 7, sender="A"))
        self.store.query(TransactionFilters(sender="A"))

        span = get_spans_by_name(self.exporter, "db query transactions")[0]
        self.assertEqual(span.attributes["db.filter_count"], 1)
        self.assertEqual(span.attributes["db.result_count"], 1)


class TestRpcTracing(unittest.TestCase):
    def setUp(self):
        self.exporter = setup_test_tracing("tx-aggregator")

    def _client(self, body):
        response = MagicMock(spec=requests.Response)
        response.status_code = 200
        response.headers = {}
        response.json.return_value = body
        session = MagicMock(spec=requests.Session)
        session.post.return_value = response
        return SolanaRpcClient("http://node.test", session=session)

    def test_client_span(self):
        self._client({"result": 55}).get_latest_slot()

        span = get_spans_by_name(self.exporter, "rpc getSlot")[0]
        self.assertEqual(span.kind, SpanKind.CLIENT)
        self.assertEqual(span.attributes["rpc.system"], "jsonrpc")
        self.assertEqual(span.attributes["rpc.method"], "getSlot")

    def test_null_block_is_classified_outside_the_span(self):
        with self.assertRaises(SlotSkipped):
            self._client({"result": None}).get_block(9)

        span = get_spans_by_name(self.exporter, "rpc getBlock")[0]
        self.assertEqual(span.attributes["ledger.slot"], 9)
        self.assertEqual(span.status.status_code, StatusCode.UNSET)

    def test_rpc_error_marks_span_as_error(self):
        body = {"error": {"code": -32007, "message": "skipped"}}
        with self.assertRaises(SlotSkipped):
            self._client(body).get_block(9)

        span = get_spans_by_name(self.exporter, "rpc getBlock")[0]
        self.assertEqual(span.status.status_code, StatusCode.ERROR)
        self.assertEqual(span.attributes["error.type"], "SlotSkipped")


class TestIngestionTracing(unittest.TestCase):
    def setUp(self):
        self.exporter = setup_test_tracing("tx-aggregator")
        self._tmp = TemporaryDirectory()
        self.store = TransactionStore(Path(self._tmp.name) / "trace.db")
        self.store.init_schema()

    def tearDown(self):
        self._tmp.cleanup()

    def test_upserts_nest_under_persist_span(self):
        client = FakeLedgerClient({100: make_block(make_tx("S1"), make_tx("S2"))}, tip=100)
        Aggregator(client, self.store, iteration_budget=1, sleep=lambda s: None).run()

        parent = get_spans_by_name(self.exporter, "persist slot")[0]
        self.assertEqual(parent.attributes["ledger.slot"], 100)
        self.assertEqual(parent.attributes["ledger.records"], 2)

        children = get_spans_by_name(self.exporter, "db upsert_transaction")
        self.assertEqual(len(children), 2)
        for child in children:
            self.assertEqual(child.parent.span_id, parent.context.span_id)
            self.assertEqual(child.context.trace_id, parent.context.trace_id)


if __name__ == "__main__":
    unittest.main()
