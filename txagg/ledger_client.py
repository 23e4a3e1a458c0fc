"""
Ledger client adapter: the only code that talks to the Solana node.

``LedgerClient`` is the capability the ingestion loop depends on;
``SolanaRpcClient`` implements it over JSON-RPC 2.0 and turns every
failure into one of the categories in ``txagg.errors`` so the caller can
pick a retry policy without inspecting transport details.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Optional, Protocol

import requests
from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from txagg.config import Settings
from txagg.errors import (
    AuthenticationFailed,
    RateLimited,
    SlotSkipped,
    UpstreamError,
    UpstreamUnavailable,
)

logger = logging.getLogger("ledger_client")

# JSON-RPC error codes returned by Solana validators
SLOT_SKIPPED_CODES = frozenset({-32007, -32009})
RATE_LIMIT_CODES = frozenset({429})


class LedgerClient(Protocol):
    def get_latest_slot(self) -> int:
        ...

    def get_block(self, slot: int) -> dict:
        ...


def _retry_after(response: requests.Response) -> Optional[float]:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return None


class SolanaRpcClient:
    """JSON-RPC client for ``getSlot`` / ``getBlock``.

    Args:
        rpc_url: HTTP(S) endpoint of the node, credentials included if any.
        commitment: Commitment level passed with every request.
        timeout: Per-request timeout in seconds.
        session: Optional ``requests.Session``; one is created (and owned)
            otherwise.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        commitment: str = "finalized",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.timeout = timeout
        self._session = session or requests.Session()
        self._owns_session = session is None
        self._ids = itertools.count(1)

    def get_latest_slot(self) -> int:
        """Return the node's current slot at the configured commitment.

        Raises:
            UpstreamUnavailable: On any network or protocol error.
            RateLimited: When the node throttles us.
            AuthenticationFailed: When the node rejects our credentials.
        """
        try:
            result = self._call("getSlot", [{"commitment": self.commitment}])
        except SlotSkipped as exc:
            raise UpstreamUnavailable(f"getSlot failed: {exc.message}") from exc
        if not isinstance(result, int) or isinstance(result, bool):
            raise UpstreamUnavailable(f"getSlot returned a non-integer result: {result!r}")
        return result

    def get_block(self, slot: int) -> dict:
        """Fetch the full block for ``slot``.

        Raises:
            SlotSkipped: No block exists for the slot.
            UpstreamUnavailable: Transient node or network failure.
            RateLimited: The node throttled the request.
            AuthenticationFailed: The node rejected our credentials.
        """
        params = [
            slot,
            {
                "commitment": self.commitment,
                "encoding": "json",
                "transactionDetails": "full",
                "rewards": False,
                "maxSupportedTransactionVersion": 0,
            },
        ]
        result = self._call("getBlock", params, slot=slot)
        if result is None:
            raise SlotSkipped(f"No block produced for slot {slot}", slot=slot)
        if not isinstance(result, dict):
            raise UpstreamUnavailable(f"getBlock returned an unexpected payload for slot {slot}", slot=slot)
        return result

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def _call(self, method: str, params: list, slot: Optional[int] = None) -> Any:
        tracer = trace.get_tracer(__name__)
        with tracer.start_as_current_span(
            f"rpc {method}",
            kind=SpanKind.CLIENT,
            attributes={
                "rpc.system": "jsonrpc",
                "rpc.method": method,
                **({"ledger.slot": slot} if slot is not None else {}),
            },
        ) as span:
            try:
                return self._send(method, params, slot)
            except UpstreamError as exc:
                span.set_status(Status(StatusCode.ERROR, exc.message))
                span.set_attribute("error.type", type(exc).__name__)
                raise

    def _send(self, method: str, params: list, slot: Optional[int]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self._session.post(self.rpc_url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise UpstreamUnavailable(f"{method} request failed: {exc}", slot=slot) from exc

        if response.status_code == 429:
            raise RateLimited(f"{method} rate limited", slot=slot, retry_after=_retry_after(response))
        if response.status_code in (401, 403):
            raise AuthenticationFailed(f"{method} rejected with HTTP {response.status_code}", slot=slot)
        if response.status_code >= 400:
            raise UpstreamUnavailable(f"{method} returned HTTP {response.status_code}", slot=slot)

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable(f"{method} returned a non-JSON body", slot=slot) from exc
        if not isinstance(body, dict):
            raise UpstreamUnavailable(f"{method} returned a malformed envelope", slot=slot)

        error = body.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", "") if isinstance(error, dict) else str(error)
            if code in SLOT_SKIPPED_CODES:
                raise SlotSkipped(message or f"Slot {slot} skipped", slot=slot)
            if code in RATE_LIMIT_CODES:
                raise RateLimited(f"{method} rate limited: {message}", slot=slot)
            logger.debug("%s error %s: %s", method, code, message)
            raise UpstreamUnavailable(f"{method} failed ({code}): {message}", slot=slot)

        if "result" not in body:
            raise UpstreamUnavailable(f"{method} response carries no result", slot=slot)
        return body["result"]


def build_ledger_client(settings: Settings) -> SolanaRpcClient:
    return SolanaRpcClient(
        settings.rpc_url,
        commitment=settings.commitment,
        timeout=settings.rpc_timeout_seconds,
    )
