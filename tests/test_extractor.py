from datetime import datetime

from txagg.extractor import format_timestamp, parse
from tests.fakes import make_block, make_tx


class TestFormatTimestamp:
    def test_formats_unix_seconds_as_utc(self):
        assert format_timestamp(1722201110) == "2024-07-28 21:11:50"

    def test_epoch(self):
        assert format_timestamp(0) == "1970-01-01 00:00:00"


class TestParse:
    def test_extracts_transfer_fields(self):
        block = make_block(make_tx("SIG1", sender="A", receiver="B"))
        records = parse(block, slot=100)

        assert len(records) == 1
        record = records[0]
        assert record.signature == "SIG1"
        assert record.slot == 100
        assert record.sender == "A"
        assert record.receiver == "B"
        assert record.block_time == datetime(2023, 1, 5, 10, 0, 0)
        assert record.amount == 1000
        assert record.raw_status == '{"Ok":null}'

    def test_preserves_block_order(self):
        block = make_block(make_tx("S3"), make_tx("S1"), make_tx("S2"))
        assert [r.signature for r in parse(block, 1)] == ["S3", "S1", "S2"]

    def test_deduplicates_signatures_within_block(self):
        block = make_block(
            make_tx("DUP", sender="A"),
            make_tx("OTHER"),
            make_tx("DUP", sender="Z"),
        )
        records = parse(block, 7)
        assert [r.signature for r in records] == ["DUP", "OTHER"]
        assert records[0].sender == "A"

    def test_keeps_entries_without_receiver(self):
        block = make_block(make_tx("SOLO", sender="A", receiver=None))
        records = parse(block, 1)
        assert len(records) == 1
        assert records[0].sender == "A"
        assert records[0].receiver is None

    def test_keeps_entries_without_any_account_keys(self):
        block = make_block(make_tx("BARE", sender=None, receiver=None))
        records = parse(block, 1)
        assert len(records) == 1
        assert records[0].sender is None
        assert records[0].receiver is None

    def test_missing_meta_leaves_amount_and_status_null(self):
        block = make_block(make_tx("NOMETA", with_meta=False))
        record = parse(block, 1)[0]
        assert record.amount is None
        assert record.raw_status is None
        assert record.sender == "A"

    def test_failed_transaction_status_is_kept_raw(self):
        err = {"InstructionError": [0, "Custom"]}
        record = parse(make_block(make_tx("FAIL", err=err)), 1)[0]
        assert record.raw_status == '{"Err":{"InstructionError":[0,"Custom"]}}'

    def test_parsed_account_keys(self):
        entry = make_tx("PARSED")
        entry["transaction"]["message"]["accountKeys"] = [
            {"pubkey": "A", "signer": True, "writable": True},
            {"pubkey": "B", "signer": False, "writable": True},
        ]
        record = parse(make_block(entry), 1)[0]
        assert (record.sender, record.receiver) == ("A", "B")

    def test_account_keys_not_a_list(self):
        entry = make_tx("ODD")
        entry["transaction"]["message"]["accountKeys"] = {"a": 1}
        record = parse(make_block(entry), 1)[0]
        assert (record.sender, record.receiver) == (None, None)

    def test_missing_block_time(self):
        records = parse(make_block(make_tx("S"), block_time=None), 1)
        assert records[0].block_time is None

    def test_drops_unsigned_and_binary_entries(self):
        unsigned = make_tx("X")
        unsigned["transaction"]["signatures"] = []
        binary = {"transaction": ["AQID", "base64"], "meta": None}
        records = parse(make_block(unsigned, binary, make_tx("KEEP")), 1)
        assert [r.signature for r in records] == ["KEEP"]

    def test_empty_block(self):
        assert parse({"blockTime": None, "transactions": []}, 1) == []
        assert parse({}, 1) == []
