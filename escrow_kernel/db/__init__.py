"""Database layer - ledger store, base classes, types, and append-only guards."""

from escrow_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from escrow_kernel.db.engine import LedgerStore, translate_db_error
from escrow_kernel.db.types import UTCDateTime

__all__ = [
    "LedgerStore",
    "translate_db_error",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "UTCDateTime",
]
