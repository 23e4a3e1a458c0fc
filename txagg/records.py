"""Domain types shared by the extractor, the store and the query service."""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

# Canonical text form of block times: storage, filters and API output.
BLOCK_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

MERGEABLE_FIELDS = ("slot", "block_time", "sender", "receiver", "amount", "raw_status")


@dataclass(frozen=True)
class TransactionRecord:
    """One transfer extracted from a block, keyed by its signature."""

    signature: str
    slot: int
    block_time: Optional[datetime] = None
    sender: Optional[str] = None
    receiver: Optional[str] = None
    amount: Optional[int] = None
    raw_status: Optional[str] = None

    def as_row(self) -> dict:
        row = {f.name: getattr(self, f.name) for f in fields(self)}
        row["block_time"] = format_block_time(self.block_time)
        return row

    @classmethod
    def from_row(cls, row) -> "TransactionRecord":
        return cls(
            signature=row["signature"],
            slot=row["slot"],
            block_time=parse_block_time(row["block_time"]),
            sender=row["sender"],
            receiver=row["receiver"],
            amount=row["amount"],
            raw_status=row["raw_status"],
        )


@dataclass(frozen=True)
class TransactionFilters:
    """Conjunctive query filters; ``None`` means unconstrained."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    signature: Optional[str] = None
    sender: Optional[str] = None
    receiver: Optional[str] = None


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    MERGED = "merged"
    UNCHANGED = "unchanged"


def format_block_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(BLOCK_TIME_FORMAT)


def parse_block_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.strptime(value, BLOCK_TIME_FORMAT)
