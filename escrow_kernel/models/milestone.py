"""
Module: escrow_kernel.models.milestone
Responsibility: ORM persistence for milestones, the paid units of work
    nested under a contract.
Architecture position: Kernel > Models.  May import from db/base.py only.
    Written exclusively by services/milestone_service.py.

Invariants enforced:
    - (contract_id, sequence) is unique; sequences come from a locked
      per-contract counter and are never reused after a deletion.
    - amount > 0.
    - status is one of the MilestoneStatus values.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from escrow_kernel.db.base import TrackedBase, UUIDString


class MilestoneStatus(str, Enum):
    """Milestone lifecycle status.

    Must align with ``lifecycles.MILESTONE_WORKFLOW.states``.
    """

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    PAID = "PAID"
    DISPUTED = "DISPUTED"
    CANCELED = "CANCELED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class Milestone(TrackedBase):
    """A deliverable with its own amount and lifecycle."""

    __tablename__ = "milestones"

    __table_args__ = (
        UniqueConstraint("contract_id", "sequence", name="uq_milestone_contract_sequence"),
        CheckConstraint("amount > 0", name="ck_milestone_amount_positive"),
        CheckConstraint(
            "status IN ('PENDING', 'IN_PROGRESS', 'SUBMITTED', 'APPROVED', 'PAID', "
            "'DISPUTED', 'CANCELED', 'COMPLETED', 'REJECTED')",
            name="ck_milestone_valid_status",
        ),
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("contracts.id"),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    amount: Mapped[int] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[MilestoneStatus] = mapped_column(
        String(20),
        nullable=False,
        default=MilestoneStatus.PENDING.value,
    )

    due_date: Mapped[datetime | None] = mapped_column(nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    deletion_requested_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Milestone {self.contract_id}#{self.sequence} {self.status}>"
