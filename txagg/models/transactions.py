from pydantic import BaseModel, Field

from txagg.records import TransactionRecord, format_block_time


class TransactionOut(BaseModel):
    """A stored transaction as returned by ``GET /transactions``."""

    signature: str
    slot: int = Field(ge=0)
    block_time: str | None = Field(
        default=None, description="Block time, YYYY-MM-DD HH:MM:SS (UTC)"
    )
    sender: str | None = None
    receiver: str | None = None
    amount: int | None = Field(
        default=None, description="Lamports debited from the sender"
    )
    raw_status: str | None = None

    @classmethod
    def from_record(cls, record: TransactionRecord) -> "TransactionOut":
        return cls(
            signature=record.signature,
            slot=record.slot,
            block_time=format_block_time(record.block_time),
            sender=record.sender,
            receiver=record.receiver,
            amount=record.amount,
            raw_status=record.raw_status,
        )


class ErrorResponse(BaseModel):
    detail: str
