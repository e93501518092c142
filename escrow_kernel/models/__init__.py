"""Domain models for the escrow kernel."""

from escrow_kernel.models.contract import Contract, ContractStatus
from escrow_kernel.models.escrow import (
    EscrowAccount,
    EscrowAccountStatus,
    EscrowTransaction,
    EscrowTransactionType,
)
from escrow_kernel.models.milestone import Milestone, MilestoneStatus
from escrow_kernel.models.sequence import SequenceCounter
from escrow_kernel.models.user import User, UserRole, UserStatus
from escrow_kernel.models.wallet import Wallet, WalletTransaction, WalletTransactionType

__all__ = [
    "User",
    "UserRole",
    "UserStatus",
    "Wallet",
    "WalletTransaction",
    "WalletTransactionType",
    "EscrowAccount",
    "EscrowAccountStatus",
    "EscrowTransaction",
    "EscrowTransactionType",
    "Contract",
    "ContractStatus",
    "Milestone",
    "MilestoneStatus",
    "SequenceCounter",
]
