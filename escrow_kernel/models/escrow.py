"""
Module: escrow_kernel.models.escrow
Responsibility: ORM persistence for per-contract escrow accounts and their
    append-only transaction log.
Architecture position: Kernel > Models.  May import from db/base.py only.
    Rows are written exclusively by services/escrow_engine.py.

Invariants enforced:
    - One escrow account per contract (uq_escrow_contract).
    - held_amount >= 0, initial_amount >= 0 (CHECK constraints).
    - held_amount == initial_amount + sum(DEPOSIT) - sum(RELEASE)
      - sum(REFUND) over the account's EscrowTransaction rows
      (verified by selectors/ledger_selector.py:reconcile_escrow).
    - EscrowTransaction rows are append-only (db/immutability.py).
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from escrow_kernel.db.base import Base, TrackedBase, UUIDString


class EscrowAccountStatus(str, Enum):
    """Escrow account lifecycle."""

    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


class EscrowTransactionType(str, Enum):
    """Kind of escrow movement.

    DEPOSIT  client available -> escrow
    RELEASE  escrow -> freelancer pending
    REFUND   escrow -> client available
    """

    DEPOSIT = "DEPOSIT"
    RELEASE = "RELEASE"
    REFUND = "REFUND"


class EscrowAccount(TrackedBase):
    """Funds held for one contract, in minor units."""

    __tablename__ = "escrow_accounts"

    __table_args__ = (
        UniqueConstraint("contract_id", name="uq_escrow_contract"),
        CheckConstraint("held_amount >= 0", name="ck_escrow_held_non_negative"),
        CheckConstraint("initial_amount >= 0", name="ck_escrow_initial_non_negative"),
        CheckConstraint(
            "status IN ('ACTIVE', 'COMPLETED', 'CANCELED')",
            name="ck_escrow_valid_status",
        ),
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("contracts.id"),
        nullable=False,
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

    held_amount: Mapped[int] = mapped_column(nullable=False, default=0)

    initial_amount: Mapped[int] = mapped_column(nullable=False, default=0)

    status: Mapped[EscrowAccountStatus] = mapped_column(
        String(20),
        nullable=False,
        default=EscrowAccountStatus.ACTIVE.value,
    )

    # Number of EscrowTransaction rows written for this account
    entry_count: Mapped[int] = mapped_column(nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<EscrowAccount contract={self.contract_id} held={self.held_amount}>"


class EscrowTransaction(Base):
    """One escrow movement.  Immutable once written."""

    __tablename__ = "escrow_transactions"

    __table_args__ = (
        UniqueConstraint(
            "escrow_account_id", "entry_number", name="uq_escrow_tx_entry"
        ),
        UniqueConstraint("idempotency_key", name="uq_escrow_tx_idempotency_key"),
        CheckConstraint("amount > 0", name="ck_escrow_tx_amount_positive"),
        CheckConstraint(
            "type IN ('DEPOSIT', 'RELEASE', 'REFUND')",
            name="ck_escrow_tx_valid_type",
        ),
        Index("idx_escrow_tx_milestone", "milestone_id"),
    )

    escrow_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("escrow_accounts.id"),
        nullable=False,
    )

    entry_number: Mapped[int] = mapped_column(nullable=False)

    amount: Mapped[int] = mapped_column(nullable=False)

    type: Mapped[EscrowTransactionType] = mapped_column(
        String(20),
        nullable=False,
    )

    source_wallet_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("wallets.id"),
        nullable=True,
    )

    destination_wallet_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("wallets.id"),
        nullable=True,
    )

    # Set for milestone settlements; no FK since milestones can be deleted
    milestone_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    description: Mapped[str] = mapped_column(Text, nullable=False)

    idempotency_key: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<EscrowTransaction {self.type} {self.amount} "
            f"account={self.escrow_account_id}>"
        )
