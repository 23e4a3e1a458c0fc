import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from opentelemetry import trace
from opentelemetry.trace import SpanKind

from txagg.errors import DataConflict, StoreUnavailable
from txagg.records import (
    MERGEABLE_FIELDS,
    TransactionFilters,
    TransactionRecord,
    UpsertOutcome,
    format_block_time,
)

logger = logging.getLogger("database")

WATERMARK_KEY = "slot_watermark"

SCHEMA = """
CREATE TABLE IF NOT EXISTS transactions (
    signature TEXT PRIMARY KEY,
    slot INTEGER NOT NULL CHECK (slot >= 0),
    block_time TEXT,
    sender TEXT,
    receiver TEXT,
    amount INTEGER,
    raw_status TEXT,
    ingested_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_transactions_block_time ON transactions(block_time);
CREATE INDEX IF NOT EXISTS idx_transactions_sender ON transactions(sender);
CREATE INDEX IF NOT EXISTS idx_transactions_receiver ON transactions(receiver);

CREATE TABLE IF NOT EXISTS ingest_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_COLUMNS = "signature, slot, block_time, sender, receiver, amount, raw_status"


def _merge(existing: sqlite3.Row, candidate: dict) -> tuple[dict, dict]:
    """Split a candidate row into null-filling updates and conflicting fields."""
    updates = {}
    conflicts = {}
    for name in MERGEABLE_FIELDS:
        stored = existing[name]
        incoming = candidate[name]
        if incoming is None or stored == incoming:
            continue
        if stored is None:
            updates[name] = incoming
        else:
            conflicts[name] = (stored, incoming)
    return updates, conflicts


class TransactionStore:
    """SQLite-backed store for transaction records and the slot watermark.

    Every operation opens its own short-lived connection, so the store can
    be shared between the ingestion thread and request workers. The
    database runs in WAL mode: readers see the last committed state and
    are not blocked by an in-flight upsert.

    Args:
        db_path: Location of the SQLite file.
        busy_timeout: Seconds a writer waits for the write lock.
    """

    def __init__(self, db_path: Path, busy_timeout: float = 5.0) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout

    @contextmanager
    def _connect(self):
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot open {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Store operation failed: {exc}") from exc
        finally:
            conn.close()

    @contextmanager
    def _transaction(self):
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def init_schema(self, reset: bool = False) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailable(f"Cannot create {self.db_path.parent}: {exc}") from exc
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            if reset:
                conn.execute("DROP TABLE IF EXISTS transactions")
                conn.execute("DROP TABLE IF EXISTS ingest_state")
                logger.warning("Dropped existing tables in %s", self.db_path)
            conn.executescript(SCHEMA)

    def upsert(self, record: TransactionRecord) -> UpsertOutcome:
        """Insert ``record``, or fill the null fields of the stored row.

        Raises:
            DataConflict: A stored non-null field differs from the
                candidate. Nothing is written in that case.
            StoreUnavailable: The database could not be written.
        """
        tracer = trace.get_tracer(__name__)
        with tracer.start_as_current_span(
            "db upsert_transaction",
            kind=SpanKind.INTERNAL,
            attributes={
                "db.system": "sqlite",
                "db.operation": "UPSERT",
                "ledger.slot": record.slot,
            },
        ) as span:
            candidate = record.as_row()
            with self._transaction() as conn:
                existing = conn.execute(
                    f"SELECT {_COLUMNS} FROM transactions WHERE signature = ?",
                    (record.signature,),
                ).fetchone()

                if existing is None:
                    conn.execute(
                        f"INSERT INTO transactions ({_COLUMNS}) "
                        "VALUES (:signature, :slot, :block_time, :sender, :receiver, :amount, :raw_status)",
                        candidate,
                    )
                    outcome = UpsertOutcome.INSERTED
                else:
                    updates, conflicts = _merge(existing, candidate)
                    if conflicts:
                        span.set_attribute("db.conflict_fields", sorted(conflicts))
                        raise DataConflict(record.signature, conflicts)
                    if updates:
                        assignments = ", ".join(f"{name} = :{name}" for name in updates)
                        conn.execute(
                            f"UPDATE transactions SET {assignments} WHERE signature = :signature",
                            {**updates, "signature": record.signature},
                        )
                        outcome = UpsertOutcome.MERGED
                    else:
                        outcome = UpsertOutcome.UNCHANGED

            span.set_attribute("db.upsert_outcome", outcome.value)
            return outcome

    def get(self, signature: str) -> Optional[TransactionRecord]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM transactions WHERE signature = ?",
                (signature,),
            ).fetchone()
        return TransactionRecord.from_row(row) if row else None

    def get_watermark(self) -> Optional[int]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM ingest_state WHERE key = ?", (WATERMARK_KEY,)
            ).fetchone()
        return int(row["value"]) if row else None

    def set_watermark(self, slot: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO ingest_state (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = datetime('now')",
                (WATERMARK_KEY, str(slot)),
            )

    def query(self, filters: TransactionFilters) -> list[TransactionRecord]:
        """Records matching every supplied filter, oldest block first.

        Rows without a block time sort after all dated rows.
        """
        tracer = trace.get_tracer(__name__)
        with tracer.start_as_current_span(
            "db query transactions",
            kind=SpanKind.INTERNAL,
            attributes={"db.system": "sqlite", "db.operation": "SELECT"},
        ) as span:
            clauses = []
            params = []
            if filters.start is not None:
                clauses.append("block_time >= ?")
                params.append(format_block_time(filters.start))
            if filters.end is not None:
                clauses.append("block_time <= ?")
                params.append(format_block_time(filters.end))
            for column in ("signature", "sender", "receiver"):
                value = getattr(filters, column)
                if value is not None:
                    clauses.append(f"{column} = ?")
                    params.append(value)

            sql = f"SELECT {_COLUMNS} FROM transactions"
            if clauses:
                sql += " WHERE " + " AND ".join(clauses)
            sql += " ORDER BY block_time IS NULL, block_time, slot, signature"

            with self._connect() as conn:
                rows = conn.execute(sql, params).fetchall()

            result = [TransactionRecord.from_row(row) for row in rows]
            span.set_attribute("db.filter_count", len(clauses))
            span.set_attribute("db.result_count", len(result))
            return result

    def count(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS cnt FROM transactions").fetchone()
        return row["cnt"]

    def check_connection(self) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1")
            return True
        except StoreUnavailable:
            return False
