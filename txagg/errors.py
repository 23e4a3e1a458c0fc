"""
Error taxonomy for the aggregator.

Upstream failures are split by what the ingestion loop should do about
them: retry (``TransientUpstream``), skip the slot (``SlotUnavailable``)
or abort (``FatalUpstream``). Store and query errors are surfaced at the
request boundary as structured responses.
"""

from __future__ import annotations

from typing import Any, Optional


class AggregatorError(Exception):
    """Base class for every error raised by this package."""


# ── Upstream ledger ──────────────────────────────────────────────


class UpstreamError(AggregatorError):
    """Failure reported by, or while talking to, the ledger node."""

    def __init__(self, message: str, slot: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.slot = slot


class TransientUpstream(UpstreamError):
    """Retry with backoff."""


class UpstreamUnavailable(TransientUpstream):
    """Network error, timeout, 5xx or unusable response body."""


class RateLimited(TransientUpstream):
    """The node asked us to slow down (HTTP 429)."""

    def __init__(
        self,
        message: str,
        slot: Optional[int] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message, slot)
        self.retry_after = retry_after


class SlotUnavailable(UpstreamError):
    """No block will ever exist for the slot; skip it."""


class SlotSkipped(SlotUnavailable):
    """The leader did not produce a block, or the node no longer keeps it."""


class FatalUpstream(UpstreamError):
    """Unrecoverable; the ingestion loop stops and the error reaches the operator."""


class AuthenticationFailed(FatalUpstream):
    """The node rejected our credentials (HTTP 401/403)."""


# ── Storage ──────────────────────────────────────────────────────


class DataConflict(AggregatorError):
    """An upsert tried to overwrite a stored non-null field with a different value."""

    def __init__(self, signature: str, fields: dict[str, tuple[Any, Any]]) -> None:
        names = ", ".join(sorted(fields))
        super().__init__(f"Conflicting values for {signature}: {names}")
        self.signature = signature
        self.fields = fields


class StoreUnavailable(AggregatorError):
    """The SQLite store could not be opened, read or written."""


# ── Query / configuration ────────────────────────────────────────


class InvalidFilter(AggregatorError):
    """A query parameter could not be parsed."""

    def __init__(self, parameter: str, message: str) -> None:
        super().__init__(message)
        self.parameter = parameter
        self.message = message


class ConfigurationError(AggregatorError):
    """An environment setting is missing or malformed."""
