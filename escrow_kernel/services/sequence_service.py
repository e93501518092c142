"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing numbers for named sequences.  Milestones
    take their per-contract ``sequence`` from here
    (``milestone_sequence_name(contract_id)``).

Architecture position:
    Kernel > Services -- called by MilestoneService.

Invariants enforced:
    - The locked counter row is the sole source of truth for the next
      value.  Counting existing rows (max+1 / count+1) is never used, so a
      number is never handed out twice even after a milestone is deleted.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  On rollback the value is returned.

Failure modes:
    - IntegrityError on a concurrent first use of a sequence name; handled
      with a savepoint rollback and a locked re-read.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from escrow_kernel.logging_config import get_logger
from escrow_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


def milestone_sequence_name(contract_id: UUID) -> str:
    return f"milestone:{contract_id}"


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly-monotonic
        integer value.  Does NOT call ``session.commit()``.

    Usage:
        seq = sequence_service.next_value(milestone_sequence_name(contract.id))
    """

    def __init__(self, session: Session):
        self._session = session

    def _lock_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Postconditions:
            - Returns an integer > 0 that is strictly greater than any
              previously returned value for this sequence name.
            - The counter row is locked until the transaction completes.
        """
        counter = self._lock_counter(sequence_name)

        if counter is None:
            # First use; another transaction may be creating it too
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._lock_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value
