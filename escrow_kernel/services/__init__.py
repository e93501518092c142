"""Kernel services: the only writers of ledger, contract and milestone rows."""

from escrow_kernel.services.access_policy import AccessPolicy, ContractParties, ContractRole
from escrow_kernel.services.contract_service import ContractService
from escrow_kernel.services.escrow_engine import EscrowEngine
from escrow_kernel.services.milestone_service import MilestoneService
from escrow_kernel.services.sequence_service import SequenceService
from escrow_kernel.services.settlement_service import SettlementService
from escrow_kernel.services.user_service import UserService
from escrow_kernel.services.wallet_ledger import WalletLedger

__all__ = [
    "AccessPolicy",
    "ContractParties",
    "ContractRole",
    "ContractService",
    "EscrowEngine",
    "MilestoneService",
    "SequenceService",
    "SettlementService",
    "UserService",
    "WalletLedger",
]
