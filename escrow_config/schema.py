"""
Escrow configuration schema.

Frozen dataclasses produced by the loader from a YAML document. These are
the only configuration objects the kernel's composition root sees.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection and pool settings for the ledger store."""

    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class TransactionSettings:
    """Bounded wait windows applied to every unit of work (PostgreSQL only)."""

    lock_timeout_ms: int = 5000
    statement_timeout_ms: int = 15000


@dataclass(frozen=True)
class LedgerSettings:
    """Currency conventions at the kernel boundary."""

    currency: str = "USD"
    minor_unit_scale: int = 100


@dataclass(frozen=True)
class EscrowConfig:
    """The complete runtime configuration."""

    database: DatabaseSettings
    transactions: TransactionSettings = field(default_factory=TransactionSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    checksum: str = ""
