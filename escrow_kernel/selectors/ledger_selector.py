"""
Module: escrow_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries: escrow and wallet transaction
    history, and escrow reconciliation against the transaction log.
Architecture position: Kernel > Selectors.  May import from models/,
    domain DTOs and selectors/base.py.  MUST NOT import from services/.

Invariants verified:
    held_amount == initial_amount + sum(DEPOSIT) - sum(RELEASE) - sum(REFUND)

    ``reconcile_escrow`` recomputes the right-hand side from
    EscrowTransaction rows and reports whether the stored held_amount
    agrees.  A mismatch means a write bypassed EscrowEngine.
"""

from uuid import UUID

from sqlalchemy import func, select

from escrow_kernel.domain.dtos import (
    EscrowReconciliation,
    EscrowTransactionInfo,
    WalletTransactionInfo,
)
from escrow_kernel.exceptions import (
    ContractNotFoundError,
    EscrowNotInitializedError,
    WalletNotFoundError,
)
from escrow_kernel.logging_config import get_logger
from escrow_kernel.models.contract import Contract
from escrow_kernel.models.escrow import EscrowAccount, EscrowTransaction, EscrowTransactionType
from escrow_kernel.models.wallet import Wallet, WalletTransaction
from escrow_kernel.selectors.base import BaseSelector
from escrow_kernel.utils.ids import coerce_uuid

logger = get_logger("selectors.ledger")


class LedgerSelector(BaseSelector[EscrowTransaction]):
    """History and reconciliation reads over the money logs."""

    def _account(self, contract_id: UUID) -> EscrowAccount | None:
        account = self.session.execute(
            select(EscrowAccount).where(EscrowAccount.contract_id == contract_id)
        ).scalar_one_or_none()
        if account is None and self.session.get(Contract, contract_id) is None:
            raise ContractNotFoundError(str(contract_id))
        return account

    def escrow_history(self, contract_id: UUID | str) -> list[EscrowTransactionInfo]:
        """Escrow movements of the contract, oldest first.  Empty if uninitialized."""
        cid = coerce_uuid(contract_id, "contract_id")
        account = self._account(cid)
        if account is None:
            return []
        rows = self.session.execute(
            select(EscrowTransaction)
            .where(EscrowTransaction.escrow_account_id == account.id)
            .order_by(EscrowTransaction.entry_number)
        ).scalars().all()
        return [EscrowTransactionInfo.from_model(tx) for tx in rows]

    def wallet_history(self, user_id: UUID | str) -> list[WalletTransactionInfo]:
        """Balance changes of the user's wallet, oldest first."""
        uid = coerce_uuid(user_id, "user_id")
        wallet = self.session.execute(
            select(Wallet).where(Wallet.user_id == uid)
        ).scalar_one_or_none()
        if wallet is None:
            raise WalletNotFoundError(str(uid))
        rows = self.session.execute(
            select(WalletTransaction)
            .where(WalletTransaction.wallet_id == wallet.id)
            .order_by(WalletTransaction.entry_number)
        ).scalars().all()
        return [WalletTransactionInfo.from_model(tx) for tx in rows]

    def reconcile_escrow(self, contract_id: UUID | str) -> EscrowReconciliation:
        cid = coerce_uuid(contract_id, "contract_id")
        account = self._account(cid)
        if account is None:
            raise EscrowNotInitializedError(str(cid))

        totals = {
            tx_type: int(total or 0)
            for tx_type, total in self.session.execute(
                select(EscrowTransaction.type, func.sum(EscrowTransaction.amount))
                .where(EscrowTransaction.escrow_account_id == account.id)
                .group_by(EscrowTransaction.type)
            ).all()
        }
        deposited = totals.get(EscrowTransactionType.DEPOSIT.value, 0)
        released = totals.get(EscrowTransactionType.RELEASE.value, 0)
        refunded = totals.get(EscrowTransactionType.REFUND.value, 0)

        result = EscrowReconciliation(
            contract_id=cid,
            held_amount=account.held_amount,
            computed_amount=account.initial_amount + deposited - released - refunded,
            deposited=deposited,
            released=released,
            refunded=refunded,
        )
        if not result.is_balanced:
            logger.error(
                "escrow_reconciliation_mismatch",
                extra={
                    "contract_id": str(cid),
                    "held_amount": result.held_amount,
                    "computed_amount": result.computed_amount,
                },
            )
        return result
