"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor, the per-operation atomic unit and the
    row-locking read used by every service that mutates state.

Architecture position:
    Kernel > Services -- imperative shell.  Every service in
    ``escrow_kernel/services/`` that performs writes extends this class.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back the caller's transaction.
      Each public operation runs inside ``atomic()``, a SAVEPOINT, so a
      failure part-way through undoes everything that operation wrote and
      nothing else.
    - Check-then-mutate happens on rows read with ``SELECT ... FOR UPDATE``
      (``populate_existing`` so the identity map cannot serve a stale copy).

Failure modes:
    - A subclass calling ``session.commit()`` would break the atomicity of
      composed operations (e.g. settlement) and is a defect.
"""

from abc import ABC
from contextlib import contextmanager
from typing import Generator, Generic, TypeVar

from sqlalchemy import Select
from sqlalchemy.orm import Session

from escrow_kernel.db.base import Base
from escrow_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` and a ``Clock`` from the caller and
        uses ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage the outer transaction (LedgerStore.session_scope
          or the caller does).
        - Does NOT provide history/reconciliation reads -- those belong in
          ``escrow_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    @contextmanager
    def atomic(self) -> Generator[Session, None, None]:
        """
        Run the enclosed work as one all-or-nothing unit.

        Opens a SAVEPOINT inside the caller's transaction.  On exception the
        savepoint is rolled back and the exception propagates; on success
        the savepoint is released and the work stays pending in the
        caller's transaction.
        """
        with self.session.begin_nested():
            yield self.session

    def _locked(self, stmt: Select) -> ModelType | None:
        """Execute ``stmt`` with a row lock and return the single row or None."""
        return self.session.execute(
            stmt.with_for_update().execution_options(populate_existing=True)
        ).scalar_one_or_none()
