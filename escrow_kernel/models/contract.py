"""
Module: escrow_kernel.models.contract
Responsibility: ORM persistence for freelance contracts between a client
    and a freelancer.
Architecture position: Kernel > Models.  May import from db/base.py only.
    Status is changed exclusively by services/contract_service.py, along
    the table in domain/lifecycles.py.

Invariants enforced:
    - client_id != freelancer_id.
    - amount >= 0 and total_paid >= 0 (minor units).
    - status is one of the ContractStatus values.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from escrow_kernel.db.base import TrackedBase, UUIDString


class ContractStatus(str, Enum):
    """Contract lifecycle status.

    Must align with ``lifecycles.CONTRACT_WORKFLOW.states``.
    """

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    REVIEW_PENDING = "REVIEW_PENDING"
    COMPLETED = "COMPLETED"
    DISPUTED = "DISPUTED"
    TERMINATED = "TERMINATED"


class Contract(TrackedBase):
    """
    An engagement between one client and one freelancer for a job.

    Guarantees:
        - start_date is set when the contract becomes ACTIVE.
        - submitted_at is set when work is submitted for review.
        - end_date is set when the contract is COMPLETED or TERMINATED.
        - total_paid only grows, by milestone settlements.
    """

    __tablename__ = "contracts"

    __table_args__ = (
        CheckConstraint("client_id <> freelancer_id", name="ck_contract_distinct_parties"),
        CheckConstraint("amount >= 0", name="ck_contract_amount_non_negative"),
        CheckConstraint("total_paid >= 0", name="ck_contract_total_paid_non_negative"),
        CheckConstraint(
            "status IN ('PENDING', 'ACTIVE', 'REVIEW_PENDING', 'COMPLETED', "
            "'DISPUTED', 'TERMINATED')",
            name="ck_contract_valid_status",
        ),
        Index("idx_contract_client", "client_id"),
        Index("idx_contract_freelancer", "freelancer_id"),
    )

    client_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )

    freelancer_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )

    # Job postings live outside the kernel
    job_id: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[ContractStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ContractStatus.PENDING.value,
    )

    amount: Mapped[int] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    total_paid: Mapped[int] = mapped_column(nullable=False, default=0)

    start_date: Mapped[datetime | None] = mapped_column(nullable=True)

    end_date: Mapped[datetime | None] = mapped_column(nullable=True)

    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Contract {self.id} {self.status}>"
