"""
DTOs -- immutable values returned across the kernel boundary.

Responsibility:
    Services and selectors never hand ORM entities to callers.  They return
    these frozen dataclasses, built at the service boundary by the
    ``from_model()`` converters.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Model imports are for type checking
    only; from_model() is invoked from services/selectors, never from
    domain logic.

Units:
    - ``WalletBalance`` and ``EscrowStatus`` are caller-facing balance
      queries and carry MAJOR units as ``Decimal``.
    - Everything else (receipts, history rows, reconciliation, contract and
      milestone amounts) carries integer MINOR units.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Union
from uuid import UUID

from escrow_kernel.domain.money import to_major_units

if TYPE_CHECKING:
    from escrow_kernel.models.contract import Contract
    from escrow_kernel.models.escrow import EscrowAccount, EscrowTransaction
    from escrow_kernel.models.milestone import Milestone
    from escrow_kernel.models.user import User
    from escrow_kernel.models.wallet import Wallet, WalletTransaction


def _value(status: Any) -> str:
    """Plain string for a str-Enum member or an already-loaded string."""
    return status.value if isinstance(status, Enum) else status


# ---------------------------------------------------------------------------
# Balance queries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WalletBalance:
    """A wallet's balances in major units."""

    user_id: UUID
    available_balance: Decimal
    pending_balance: Decimal
    total_balance: Decimal

    @classmethod
    def from_model(cls, wallet: Wallet) -> WalletBalance:
        return cls(
            user_id=wallet.user_id,
            available_balance=to_major_units(wallet.available_balance),
            pending_balance=to_major_units(wallet.pending_balance),
            total_balance=to_major_units(wallet.available_balance + wallet.pending_balance),
        )


@dataclass(frozen=True)
class EscrowStatus:
    """An initialized escrow account's amounts in major units."""

    contract_id: UUID
    held_amount: Decimal
    initial_amount: Decimal
    status: str

    @classmethod
    def from_model(cls, account: EscrowAccount) -> EscrowStatus:
        return cls(
            contract_id=account.contract_id,
            held_amount=to_major_units(account.held_amount),
            initial_amount=to_major_units(account.initial_amount),
            status=_value(account.status),
        )


@dataclass(frozen=True)
class EscrowPresent:
    """The contract has an escrow account."""

    escrow: EscrowStatus

    @property
    def is_initialized(self) -> bool:
        return True


@dataclass(frozen=True)
class EscrowUninitialized:
    """The contract exists but no escrow account has been opened for it."""

    contract_id: UUID

    @property
    def is_initialized(self) -> bool:
        return False


EscrowState = Union[EscrowPresent, EscrowUninitialized]


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WalletReceipt:
    """
    Result of a wallet operation.

    ``replayed`` is True when the idempotency key had already been applied
    and nothing was changed by this call.
    """

    transaction_id: UUID
    user_id: UUID
    transaction_type: str
    amount: int
    available_balance: int
    pending_balance: int
    idempotency_key: str | None = None
    replayed: bool = False


@dataclass(frozen=True)
class EscrowReceipt:
    """
    Result of an escrow movement.

    ``replayed`` is True when the idempotency key had already been applied
    and nothing was changed by this call.
    """

    transaction_id: UUID
    contract_id: UUID
    transaction_type: str
    amount: int
    held_amount: int
    idempotency_key: str | None = None
    replayed: bool = False


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UserInfo:
    id: UUID
    email: str
    display_name: str
    role: str
    status: str

    @classmethod
    def from_model(cls, user: User) -> UserInfo:
        return cls(
            id=user.id,
            email=user.email,
            display_name=user.display_name,
            role=_value(user.role),
            status=_value(user.status),
        )


@dataclass(frozen=True)
class ContractInfo:
    id: UUID
    client_id: UUID
    freelancer_id: UUID
    job_id: str
    status: str
    amount: int
    currency: str
    total_paid: int
    start_date: datetime | None
    end_date: datetime | None
    submitted_at: datetime | None

    @classmethod
    def from_model(cls, contract: Contract) -> ContractInfo:
        return cls(
            id=contract.id,
            client_id=contract.client_id,
            freelancer_id=contract.freelancer_id,
            job_id=contract.job_id,
            status=_value(contract.status),
            amount=contract.amount,
            currency=contract.currency,
            total_paid=contract.total_paid,
            start_date=contract.start_date,
            end_date=contract.end_date,
            submitted_at=contract.submitted_at,
        )


@dataclass(frozen=True)
class MilestoneInfo:
    id: UUID
    contract_id: UUID
    sequence: int
    title: str
    description: str | None
    amount: int
    currency: str
    status: str
    due_date: datetime | None
    submitted_at: datetime | None
    approved_at: datetime | None
    disputed_at: datetime | None
    paid_at: datetime | None
    deletion_requested_at: datetime | None

    @classmethod
    def from_model(cls, milestone: Milestone) -> MilestoneInfo:
        return cls(
            id=milestone.id,
            contract_id=milestone.contract_id,
            sequence=milestone.sequence,
            title=milestone.title,
            description=milestone.description,
            amount=milestone.amount,
            currency=milestone.currency,
            status=_value(milestone.status),
            due_date=milestone.due_date,
            submitted_at=milestone.submitted_at,
            approved_at=milestone.approved_at,
            disputed_at=milestone.disputed_at,
            paid_at=milestone.paid_at,
            deletion_requested_at=milestone.deletion_requested_at,
        )


@dataclass(frozen=True)
class MilestoneDeleted:
    """Result of an accepted deletion; the row no longer exists."""

    milestone_id: UUID
    contract_id: UUID
    sequence: int


@dataclass(frozen=True)
class SettlementReceipt:
    """Result of paying a milestone out of escrow."""

    milestone: MilestoneInfo
    escrow: EscrowReceipt
    contract_total_paid: int
    replayed: bool = False


# ---------------------------------------------------------------------------
# Ledger history and reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WalletTransactionInfo:
    id: UUID
    wallet_id: UUID
    entry_number: int
    transaction_type: str
    amount: int
    related_id: str | None
    idempotency_key: str | None
    created_at: datetime
    details: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_model(cls, tx: WalletTransaction) -> WalletTransactionInfo:
        details: dict[str, Any] = dict(tx.details or {})
        return cls(
            id=tx.id,
            wallet_id=tx.wallet_id,
            entry_number=tx.entry_number,
            transaction_type=_value(tx.type),
            amount=tx.amount,
            related_id=tx.related_id,
            idempotency_key=tx.idempotency_key,
            created_at=tx.created_at,
            details=MappingProxyType(details),
        )


@dataclass(frozen=True)
class EscrowTransactionInfo:
    id: UUID
    escrow_account_id: UUID
    entry_number: int
    transaction_type: str
    amount: int
    source_wallet_id: UUID | None
    destination_wallet_id: UUID | None
    milestone_id: UUID | None
    description: str
    idempotency_key: str | None
    created_at: datetime

    @classmethod
    def from_model(cls, tx: EscrowTransaction) -> EscrowTransactionInfo:
        return cls(
            id=tx.id,
            escrow_account_id=tx.escrow_account_id,
            entry_number=tx.entry_number,
            transaction_type=_value(tx.type),
            amount=tx.amount,
            source_wallet_id=tx.source_wallet_id,
            destination_wallet_id=tx.destination_wallet_id,
            milestone_id=tx.milestone_id,
            description=tx.description,
            idempotency_key=tx.idempotency_key,
            created_at=tx.created_at,
        )


@dataclass(frozen=True)
class EscrowReconciliation:
    """
    Held amount versus the amount implied by the transaction log.

    computed_amount = initial + sum(DEPOSIT) - sum(RELEASE) - sum(REFUND)
    """

    contract_id: UUID
    held_amount: int
    computed_amount: int
    deposited: int
    released: int
    refunded: int

    @property
    def is_balanced(self) -> bool:
        return self.held_amount == self.computed_amount
