"""
Module: escrow_kernel.models.wallet
Responsibility: ORM persistence for user wallets and their append-only
    transaction log.
Architecture position: Kernel > Models.  May import from db/base.py only.
    Rows are written exclusively by services/wallet_ledger.py.

Invariants enforced:
    - One wallet per user (uq_wallet_user).
    - available_balance >= 0 and pending_balance >= 0 (CHECK constraints,
      in addition to the service-level checks under row lock).
    - WalletTransaction.amount > 0; the direction is implied by the type.
    - (wallet_id, entry_number) is unique; entry_number increases by one
      for every balance change on the wallet.
    - idempotency_key, when present, is unique.
    - WalletTransaction rows are append-only (db/immutability.py).

Audit relevance:
    Every balance change on a Wallet has exactly one WalletTransaction.
    ``Wallet.entry_count`` equals the number of log rows for the wallet.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from escrow_kernel.db.base import Base, TrackedBase, UUIDString


class WalletTransactionType(str, Enum):
    """Kind of wallet balance change.

    DEPOSIT     external top-up into available
    WITHDRAWAL  payout out of available
    HOLD        available moved into a contract escrow
    RELEASE     escrow release into pending
    ADJUSTMENT  pending -> available, or escrow refund into available
    """

    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    HOLD = "HOLD"
    RELEASE = "RELEASE"
    ADJUSTMENT = "ADJUSTMENT"


class Wallet(TrackedBase):
    """A user's spendable and pending balances, in minor units."""

    __tablename__ = "wallets"

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_wallet_user"),
        CheckConstraint("available_balance >= 0", name="ck_wallet_available_non_negative"),
        CheckConstraint("pending_balance >= 0", name="ck_wallet_pending_non_negative"),
    )

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )

    available_balance: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
    )

    pending_balance: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
    )

    # Number of WalletTransaction rows written for this wallet
    entry_count: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
    )

    @property
    def total_balance(self) -> int:
        return self.available_balance + self.pending_balance

    def __repr__(self) -> str:
        return (
            f"<Wallet user={self.user_id} available={self.available_balance} "
            f"pending={self.pending_balance}>"
        )


class WalletTransaction(Base):
    """
    One wallet balance change.  Immutable once written.

    ``related_id`` points at the contract (HOLD, RELEASE, refund
    ADJUSTMENT) or the payout (WITHDRAWAL) or external payment (DEPOSIT).
    """

    __tablename__ = "wallet_transactions"

    __table_args__ = (
        UniqueConstraint("wallet_id", "entry_number", name="uq_wallet_tx_entry"),
        UniqueConstraint("idempotency_key", name="uq_wallet_tx_idempotency_key"),
        CheckConstraint("amount > 0", name="ck_wallet_tx_amount_positive"),
        CheckConstraint(
            "type IN ('DEPOSIT', 'WITHDRAWAL', 'HOLD', 'RELEASE', 'ADJUSTMENT')",
            name="ck_wallet_tx_valid_type",
        ),
        Index("idx_wallet_tx_related", "related_id"),
    )

    wallet_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("wallets.id"),
        nullable=False,
    )

    entry_number: Mapped[int] = mapped_column(nullable=False)

    amount: Mapped[int] = mapped_column(nullable=False)

    type: Mapped[WalletTransactionType] = mapped_column(
        String(20),
        nullable=False,
    )

    related_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    # "metadata" is reserved on declarative classes
    details: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )

    idempotency_key: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<WalletTransaction {self.type} {self.amount} wallet={self.wallet_id}>"
