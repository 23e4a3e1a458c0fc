"""Test doubles and payload builders shared by the test modules."""

import calendar
from datetime import datetime

from txagg.errors import SlotSkipped
from txagg.records import BLOCK_TIME_FORMAT


def unix(text: str) -> int:
    """Unix seconds for a ``YYYY-MM-DD HH:MM:SS`` UTC literal."""
    return calendar.timegm(datetime.strptime(text, BLOCK_TIME_FORMAT).timetuple())


def make_tx(
    signature,
    sender="A",
    receiver="B",
    pre_balances=(5000, 0),
    post_balances=(4000, 1000),
    err=None,
    with_meta=True,
):
    keys = [k for k in (sender, receiver) if k is not None]
    entry = {
        "transaction": {
            "signatures": [signature],
            "message": {"accountKeys": keys, "instructions": []},
        },
    }
    if with_meta:
        entry["meta"] = {
            "err": err,
            "status": {"Ok": None} if err is None else {"Err": err},
            "fee": 5000,
            "preBalances": list(pre_balances),
            "postBalances": list(post_balances),
        }
    return entry


def make_block(*transactions, block_time="2023-01-05 10:00:00"):
    return {
        "blockhash": "hash",
        "previousBlockhash": "prev",
        "parentSlot": 0,
        "blockTime": unix(block_time) if block_time is not None else None,
        "transactions": list(transactions),
    }


class FakeLedgerClient:
    """In-memory ``LedgerClient``.

    Slots without a block raise ``SlotSkipped``. ``failures`` maps a slot
    to exceptions raised, in order, before the block is returned.
    ``tips`` is consumed one value per ``get_latest_slot`` call; the last
    value repeats.
    """

    def __init__(self, blocks=None, tip=1_000, failures=None, tips=None):
        self.blocks = dict(blocks or {})
        self.failures = {slot: list(errors) for slot, errors in (failures or {}).items()}
        self.tips = list(tips) if tips else [tip]
        self.requested = []
        self.tip_calls = 0

    def get_latest_slot(self):
        self.tip_calls += 1
        if len(self.tips) > 1:
            return self.tips.pop(0)
        return self.tips[0]

    def get_block(self, slot):
        self.requested.append(slot)
        pending = self.failures.get(slot)
        if pending:
            raise pending.pop(0)
        if slot not in self.blocks:
            raise SlotSkipped(f"Slot {slot} skipped", slot=slot)
        return self.blocks[slot]

    def close(self):
        self.closed = True
