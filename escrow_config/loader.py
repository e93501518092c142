"""
Configuration Loader (``escrow_config.loader``).

Responsibility
--------------
Loads a YAML configuration document and parses it into the frozen
dataclasses of ``escrow_config.schema``.  Runtime callers go through
``escrow_config.get_active_config()``; this module is the parsing layer
underneath it.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from escrow_config.schema import (
    DatabaseSettings,
    EscrowConfig,
    LedgerSettings,
    TransactionSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top-level document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be a mapping: {path}")
    return data


def _positive_int(data: dict[str, Any], key: str, default: int) -> int:
    value = int(data.get(key, default))
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    """Parse DatabaseSettings; ``url`` is required."""
    return DatabaseSettings(
        url=data["url"],
        echo=bool(data.get("echo", False)),
        pool_size=_positive_int(data, "pool_size", 20),
        max_overflow=int(data.get("max_overflow", 10)),
        pool_timeout=_positive_int(data, "pool_timeout", 30),
        pool_recycle=int(data.get("pool_recycle", 1800)),
    )


def parse_transactions(data: dict[str, Any]) -> TransactionSettings:
    """Parse TransactionSettings."""
    return TransactionSettings(
        lock_timeout_ms=_positive_int(data, "lock_timeout_ms", 5000),
        statement_timeout_ms=_positive_int(data, "statement_timeout_ms", 15000),
    )


def parse_ledger(data: dict[str, Any]) -> LedgerSettings:
    """Parse LedgerSettings."""
    currency = str(data.get("currency", "USD"))
    if len(currency) != 3 or not currency.isalpha():
        raise ValueError(f"currency must be a 3-letter ISO 4217 code, got {currency!r}")
    return LedgerSettings(
        currency=currency.upper(),
        minor_unit_scale=_positive_int(data, "minor_unit_scale", 100),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of a parsed configuration document."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_config(data: dict[str, Any]) -> EscrowConfig:
    """
    Parse a complete EscrowConfig from a dict.

    Raises:
        KeyError: if ``database`` or ``database.url`` is missing.
        ValueError: if a value is out of range.
    """
    return EscrowConfig(
        database=parse_database(data["database"]),
        transactions=parse_transactions(data.get("transactions") or {}),
        ledger=parse_ledger(data.get("ledger") or {}),
        checksum=compute_checksum(data),
    )
