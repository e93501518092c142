"""
Module: escrow_kernel.db.types
Responsibility: Column types shared by every model.
Architecture position: Kernel > DB.  MUST NOT import from models/, services/,
    selectors/ or domain/.

Invariants enforced:
    - Timestamps are always returned timezone-aware in UTC, regardless of
      whether the backend preserves offsets (SQLite does not).
"""

from datetime import timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """
    DateTime(timezone=True) that always binds and returns aware UTC values.

    Naive values read back from backends without offset support are
    interpreted as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
