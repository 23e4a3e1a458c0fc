"""
Ingestion loop: walks slots in order and persists their transactions.

One cycle per slot::

    IDLE -> FETCHING -> PARSING -> PERSISTING -> IDLE
              |  ^
              v  |
            BACKOFF        (transient upstream failure, bounded attempts)

A skipped slot moves straight on to the next one without counting an
iteration. ``FatalUpstream`` and ``StoreUnavailable`` end the loop in
``FATAL`` and propagate out of ``run()``; reaching the iteration budget
ends it in ``DONE``. A stop request is honoured between cycles only.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from opentelemetry import trace
from opentelemetry.trace import SpanKind

from txagg import extractor
from txagg.config import Settings
from txagg.database import TransactionStore
from txagg.errors import (
    DataConflict,
    FatalUpstream,
    RateLimited,
    SlotUnavailable,
    TransientUpstream,
)
from txagg.ledger_client import LedgerClient
from txagg.records import TransactionRecord, UpsertOutcome
from txagg.telemetry import (
    BLOCK_FETCH_DURATION,
    DATA_CONFLICTS,
    RECORDS_UPSERTED,
    SLOTS_PROCESSED,
    SLOTS_SKIPPED,
    SLOT_WATERMARK,
    UPSTREAM_RETRIES,
)

logger = logging.getLogger("aggregator")


class IngestionState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    BACKOFF = "backoff"
    PARSING = "parsing"
    PERSISTING = "persisting"
    DONE = "done"
    STOPPED = "stopped"
    FATAL = "fatal"


class SlotAbandoned(SlotUnavailable):
    """Every fetch attempt for the slot failed transiently."""


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for transient upstream failures.

    ``max_attempts`` counts the first try, so ``max_attempts=1`` never
    retries. A ``retry_after`` hint from a rate-limited response wins over
    the computed delay, still capped at ``max_delay``.
    """

    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 30.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int, error: Exception) -> float:
        if isinstance(error, RateLimited) and error.retry_after is not None:
            return min(error.retry_after, self.max_delay)
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)


@dataclass
class IngestionStats:
    iterations: int = 0
    slots_skipped: int = 0
    slots_abandoned: int = 0
    records_inserted: int = 0
    records_merged: int = 0
    records_unchanged: int = 0
    conflicts: int = 0
    last_slot: Optional[int] = None


class Aggregator:
    """Drives slot traversal from the watermark towards the chain tip.

    Args:
        client: Anything implementing ``LedgerClient``.
        store: The shared ``TransactionStore``.
        iteration_budget: Number of persisted slots after which the loop
            finishes in ``DONE``.
        retry_policy: Backoff for transient fetch failures.
        max_failed_slots: Consecutive abandoned slots tolerated before
            the loop gives up with ``FatalUpstream``.
        poll_interval: Seconds to wait for the tip to reach the next slot.
        max_slot_lag: When set, a resume point further behind the tip
            than this jumps forward to ``tip - max_slot_lag``.
        on_progress: Called with the slot number after each persisted slot.
        sleep: Backoff sleep function (injected in tests).
    """

    def __init__(
        self,
        client: LedgerClient,
        store: TransactionStore,
        *,
        iteration_budget: int,
        retry_policy: Optional[RetryPolicy] = None,
        max_failed_slots: int = 10,
        poll_interval: float = 1.0,
        max_slot_lag: Optional[int] = None,
        on_progress: Optional[Callable[[int], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if iteration_budget < 1:
            raise ValueError("iteration_budget must be >= 1")
        self.client = client
        self.store = store
        self.iteration_budget = iteration_budget
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_failed_slots = max_failed_slots
        self.poll_interval = poll_interval
        self.max_slot_lag = max_slot_lag
        self.on_progress = on_progress
        self._sleep = sleep

        self.state = IngestionState.IDLE
        self.stats = IngestionStats()
        self.error: Optional[Exception] = None
        self._tip: Optional[int] = None
        self._stop = threading.Event()

    # ── control ──────────────────────────────────────────────────

    def request_stop(self) -> None:
        """Ask the loop to stop before its next cycle."""
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def _set_state(self, state: IngestionState) -> None:
        if state is not self.state:
            logger.debug("State %s -> %s", self.state.value, state.value)
            self.state = state

    # ── main loop ────────────────────────────────────────────────

    def run(self) -> IngestionStats:
        """Process slots until the budget is spent or a stop is requested.

        Raises:
            FatalUpstream: Upstream rejected us, or too many slots in a
                row could not be fetched.
            StoreUnavailable: The store could not be read or written.
        """
        try:
            slot = self._resume_slot()
            failed_in_a_row = 0

            while self.stats.iterations < self.iteration_budget:
                if self._stop.is_set():
                    self._set_state(IngestionState.STOPPED)
                    logger.info("Ingestion stopped on request before slot %d", slot)
                    return self.stats

                self._set_state(IngestionState.IDLE)
                if not self._wait_for_slot(slot):
                    continue

                try:
                    block = self._fetch_block(slot)
                except SlotAbandoned as exc:
                    failed_in_a_row += 1
                    self.stats.slots_abandoned += 1
                    SLOTS_SKIPPED.labels(reason="retries_exhausted").inc()
                    logger.warning("%s", exc.message)
                    if failed_in_a_row > self.max_failed_slots:
                        raise FatalUpstream(
                            f"Upstream unavailable for {failed_in_a_row} consecutive slots",
                            slot=slot,
                        ) from exc
                    slot += 1
                    continue
                except SlotUnavailable as exc:
                    failed_in_a_row = 0
                    self.stats.slots_skipped += 1
                    SLOTS_SKIPPED.labels(reason="skipped").inc()
                    logger.debug("Slot %d skipped: %s", slot, exc.message)
                    slot += 1
                    continue

                failed_in_a_row = 0
                records = self._parse_block(slot, block)
                if records is not None:
                    self._persist_slot(slot, records)
                slot += 1

            self._set_state(IngestionState.DONE)
            logger.info(
                "Iteration budget of %d reached at slot %s",
                self.iteration_budget,
                self.stats.last_slot,
            )
            return self.stats

        except Exception as exc:
            self.error = exc
            self._set_state(IngestionState.FATAL)
            logger.exception("Ingestion aborted: %s", exc)
            raise

    # ── steps ────────────────────────────────────────────────────

    def _resume_slot(self) -> int:
        watermark = self.store.get_watermark()
        if watermark is None:
            tip = self._refresh_tip()
            logger.info("No watermark stored, starting at tip slot %d", tip)
            return tip

        slot = watermark + 1
        if self.max_slot_lag is not None:
            floor = self._refresh_tip() - self.max_slot_lag
            if slot < floor:
                logger.warning(
                    "Watermark %d is more than %d slots behind the tip, resuming at %d",
                    watermark,
                    self.max_slot_lag,
                    floor,
                )
                slot = floor
        logger.info("Resuming after watermark %d at slot %d", watermark, slot)
        return slot

    def _refresh_tip(self) -> int:
        attempt = 0
        while True:
            attempt += 1
            try:
                self._tip = self.client.get_latest_slot()
                return self._tip
            except TransientUpstream as exc:
                if attempt >= self.retry_policy.max_attempts:
                    raise FatalUpstream(
                        f"Could not read the latest slot after {attempt} attempts: {exc.message}"
                    ) from exc
                UPSTREAM_RETRIES.labels(error=type(exc).__name__).inc()
                self._set_state(IngestionState.BACKOFF)
                self._sleep(self.retry_policy.delay_for(attempt, exc))

    def _wait_for_slot(self, slot: int) -> bool:
        """Block until the tip reaches ``slot``; ``False`` if stopped meanwhile."""
        while self._tip is None or slot > self._tip:
            if self._refresh_tip() >= slot:
                break
            if self._stop.wait(self.poll_interval):
                return False
        return True

    def _fetch_block(self, slot: int) -> dict:
        attempt = 0
        while True:
            attempt += 1
            self._set_state(IngestionState.FETCHING)
            started = time.perf_counter()
            try:
                return self.client.get_block(slot)
            except TransientUpstream as exc:
                if attempt >= self.retry_policy.max_attempts:
                    raise SlotAbandoned(
                        f"Slot {slot} abandoned after {attempt} attempts: {exc.message}",
                        slot=slot,
                    ) from exc
                delay = self.retry_policy.delay_for(attempt, exc)
                UPSTREAM_RETRIES.labels(error=type(exc).__name__).inc()
                logger.warning(
                    "Slot %d fetch attempt %d failed (%s), retrying in %.2fs",
                    slot,
                    attempt,
                    exc.message,
                    delay,
                )
                self._set_state(IngestionState.BACKOFF)
                self._sleep(delay)
            finally:
                BLOCK_FETCH_DURATION.observe(time.perf_counter() - started)

    def _parse_block(self, slot: int, block: dict) -> Optional[list[TransactionRecord]]:
        """Records of ``block``, or ``None`` when the payload is malformed."""
        self._set_state(IngestionState.PARSING)
        try:
            return extractor.parse(block, slot)
        except (TypeError, ValueError, AttributeError, KeyError, IndexError):
            self.stats.slots_skipped += 1
            SLOTS_SKIPPED.labels(reason="unparsable").inc()
            logger.exception("Block for slot %d could not be parsed, skipping it", slot)
            return None

    def _persist_slot(self, slot: int, records: list[TransactionRecord]) -> None:
        tracer = trace.get_tracer(__name__)
        with tracer.start_as_current_span(
            "persist slot",
            kind=SpanKind.INTERNAL,
            attributes={"ledger.slot": slot, "ledger.records": len(records)},
        ):
            self._set_state(IngestionState.PERSISTING)
            for record in records:
                try:
                    outcome = self.store.upsert(record)
                except DataConflict as exc:
                    self.stats.conflicts += 1
                    DATA_CONFLICTS.inc()
                    logger.warning("Slot %d: %s; stored record left unchanged", slot, exc)
                    continue
                RECORDS_UPSERTED.labels(outcome=outcome.value).inc()
                if outcome is UpsertOutcome.INSERTED:
                    self.stats.records_inserted += 1
                elif outcome is UpsertOutcome.MERGED:
                    self.stats.records_merged += 1
                else:
                    self.stats.records_unchanged += 1

            self.store.set_watermark(slot)

        self.stats.iterations += 1
        self.stats.last_slot = slot
        SLOTS_PROCESSED.inc()
        SLOT_WATERMARK.set(slot)
        logger.info(
            "Slot %d persisted (%d records, iteration %d/%d)",
            slot,
            len(records),
            self.stats.iterations,
            self.iteration_budget,
        )
        if self.on_progress is not None:
            self.on_progress(slot)


def start_ingestion(aggregator: Aggregator) -> threading.Thread:
    """Run ``aggregator`` in a daemon thread and return the thread."""

    def _target() -> None:
        try:
            aggregator.run()
        except Exception:
            # run() already logged the traceback; /health reports aggregator.state
            return

    thread = threading.Thread(target=_target, name="ingestion", daemon=True)
    thread.start()
    logger.info("Ingestion thread started")
    return thread


def build_aggregator(settings: Settings, client: LedgerClient, store: TransactionStore) -> Aggregator:
    return Aggregator(
        client,
        store,
        iteration_budget=settings.iteration_budget,
        retry_policy=RetryPolicy(
            max_attempts=settings.max_attempts,
            base_delay=settings.backoff_base_seconds,
            max_delay=settings.backoff_max_seconds,
        ),
        max_failed_slots=settings.max_failed_slots,
        poll_interval=settings.poll_interval_seconds,
        max_slot_lag=settings.max_slot_lag,
    )
