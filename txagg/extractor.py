"""
Transaction extractor: raw ``getBlock`` payloads to ``TransactionRecord``.

Pure functions, no I/O. The sender is the fee payer (account key 0), the
receiver is account key 1, and the amount is the lamports debited from
the sender. Entries whose keys cannot be resolved are kept with null
fields; only entries without any signature are dropped.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from txagg.records import BLOCK_TIME_FORMAT, TransactionRecord

logger = logging.getLogger("extractor")


def block_time_to_datetime(unix_seconds: Optional[int]) -> Optional[datetime]:
    """Naive UTC datetime for a block's ``blockTime`` (``None`` stays ``None``)."""
    if unix_seconds is None:
        return None
    return datetime.fromtimestamp(int(unix_seconds), tz=timezone.utc).replace(tzinfo=None)


def format_timestamp(unix_seconds: int) -> str:
    """Render a unix timestamp as ``YYYY-MM-DD HH:MM:SS`` in UTC."""
    return block_time_to_datetime(unix_seconds).strftime(BLOCK_TIME_FORMAT)


def _account_key(keys: Any, index: int) -> Optional[str]:
    if not isinstance(keys, (list, tuple)) or index >= len(keys):
        return None
    key = keys[index]
    if isinstance(key, Mapping):
        key = key.get("pubkey")
    return key if isinstance(key, str) and key else None


def _amount(meta: Optional[Mapping[str, Any]]) -> Optional[int]:
    if not meta:
        return None
    pre = meta.get("preBalances") or []
    post = meta.get("postBalances") or []
    if not pre or not post:
        return None
    return int(pre[0]) - int(post[0])


def _raw_status(meta: Optional[Mapping[str, Any]]) -> Optional[str]:
    if not meta or "status" not in meta:
        return None
    return json.dumps(meta["status"], sort_keys=True, separators=(",", ":"))


def parse_transaction(
    entry: Mapping[str, Any],
    slot: int,
    block_time: Optional[datetime],
) -> Optional[TransactionRecord]:
    """Build a record from one ``transactions[]`` entry, or ``None`` if it has no signature."""
    tx = entry.get("transaction")
    if not isinstance(tx, Mapping):
        # binary encodings arrive as [data, encoding] and carry nothing we can key on
        return None
    signatures = tx.get("signatures") or []
    if not signatures or not isinstance(signatures[0], str):
        return None

    message = tx.get("message")
    keys = []
    if isinstance(message, Mapping):
        keys = message.get("accountKeys") or []
    meta = entry.get("meta")

    return TransactionRecord(
        signature=signatures[0],
        slot=slot,
        block_time=block_time,
        sender=_account_key(keys, 0),
        receiver=_account_key(keys, 1),
        amount=_amount(meta),
        raw_status=_raw_status(meta),
    )


def parse(block: Mapping[str, Any], slot: int) -> list[TransactionRecord]:
    """Extract records from a block, in block order, one per signature."""
    block_time = block_time_to_datetime(block.get("blockTime"))
    records: list[TransactionRecord] = []
    seen: set[str] = set()
    dropped = 0

    for entry in block.get("transactions") or []:
        record = parse_transaction(entry, slot, block_time)
        if record is None:
            dropped += 1
            continue
        if record.signature in seen:
            continue
        seen.add(record.signature)
        records.append(record)

    if dropped:
        logger.debug("Slot %d: dropped %d unsigned entries", slot, dropped)
    return records
