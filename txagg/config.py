"""
Process configuration read from environment variables.

Every setting has a default except ``LEDGER_RPC_URL``; without it the API
still serves stored data but no ingestion thread is started.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional, TypeVar

from txagg.errors import ConfigurationError

T = TypeVar("T")

DEFAULT_DATABASE_PATH = "transactions.db"
DEFAULT_ITERATION_BUDGET = 100


def _read(env: Mapping[str, str], key: str, default: T, cast: Callable[[str], T]) -> T:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{key}={raw!r} is not valid: {exc}") from exc


def _bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError("expected a boolean")


def _positive_int(raw: str) -> int:
    value = int(raw)
    if value < 1:
        raise ValueError("must be >= 1")
    return value


def _positive_float(raw: str) -> float:
    value = float(raw)
    if value <= 0:
        raise ValueError("must be > 0")
    return value


def _non_negative_float(raw: str) -> float:
    value = float(raw)
    if value < 0:
        raise ValueError("must be >= 0")
    return value


@dataclass(frozen=True)
class Settings:
    rpc_url: Optional[str] = None
    commitment: str = "finalized"
    rpc_timeout_seconds: float = 10.0
    database_path: Path = Path(DEFAULT_DATABASE_PATH)
    db_reset_on_start: bool = False
    iteration_budget: int = DEFAULT_ITERATION_BUDGET
    max_attempts: int = 5
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 30.0
    max_failed_slots: int = 10
    poll_interval_seconds: float = 1.0
    max_slot_lag: Optional[int] = None
    query_timeout_seconds: float = 10.0
    api_host: str = "127.0.0.1"
    api_port: int = 8080
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``env`` (defaults to ``os.environ``).

        Raises:
            ConfigurationError: If a value cannot be parsed.
        """
        env = os.environ if env is None else env
        return cls(
            rpc_url=_read(env, "LEDGER_RPC_URL", None, str),
            commitment=_read(env, "LEDGER_COMMITMENT", "finalized", str),
            rpc_timeout_seconds=_read(env, "RPC_TIMEOUT_SECONDS", 10.0, _positive_float),
            database_path=_read(env, "DATABASE_PATH", Path(DEFAULT_DATABASE_PATH), Path),
            db_reset_on_start=_read(env, "DB_RESET_ON_START", False, _bool),
            iteration_budget=_read(env, "INGEST_ITERATION_BUDGET", DEFAULT_ITERATION_BUDGET, _positive_int),
            max_attempts=_read(env, "INGEST_MAX_ATTEMPTS", 5, _positive_int),
            backoff_base_seconds=_read(env, "INGEST_BACKOFF_BASE_SECONDS", 0.5, _non_negative_float),
            backoff_max_seconds=_read(env, "INGEST_BACKOFF_MAX_SECONDS", 30.0, _non_negative_float),
            max_failed_slots=_read(env, "INGEST_MAX_FAILED_SLOTS", 10, _positive_int),
            poll_interval_seconds=_read(env, "INGEST_POLL_INTERVAL_SECONDS", 1.0, _non_negative_float),
            max_slot_lag=_read(env, "INGEST_MAX_SLOT_LAG", None, _positive_int),
            query_timeout_seconds=_read(env, "QUERY_TIMEOUT_SECONDS", 10.0, _positive_float),
            api_host=_read(env, "API_HOST", "127.0.0.1", str),
            api_port=_read(env, "API_PORT", 8080, _positive_int),
            log_level=_read(env, "LOG_LEVEL", "INFO", str.upper),
        )
