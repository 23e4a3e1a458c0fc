"""Solana transaction aggregator: slot ingestion into SQLite plus a query API."""

__version__ = "0.1.0"

SERVICE_NAME = "tx-aggregator"
