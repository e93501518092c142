"""
EscrowEngine -- the only writer of EscrowAccount balances.

Responsibility:
    Moves money between a client's wallet, the contract's escrow account
    and the freelancer's wallet:

        deposit   client available  -> escrow held
        release   escrow held       -> freelancer pending
        refund    escrow held       -> client available

    Once the contract has ended and the account is empty, close_account
    marks it COMPLETED or CANCELED; deposits and releases then fail.

    Each movement appends one EscrowTransaction and delegates the wallet
    side to WalletLedger, all inside one atomic unit.

Architecture position:
    Kernel > Services.  Depends on WalletLedger and AccessPolicy.  Called
    by callers directly and by SettlementService for milestone payments.

Invariants enforced:
    - held_amount never goes negative: checked on the escrow row under
      ``SELECT ... FOR UPDATE`` before any mutation.
    - held_amount == initial_amount + deposits - releases - refunds.
    - Lock order is escrow account, then wallet.
    - Idempotency on every movement (see WalletLedger for the rules).

Failure modes:
    - ContractNotFoundError, EscrowNotInitializedError, UnauthorizedError,
      EscrowAccountClosedError, EscrowNotClosableError,
      InsufficientFundsError, WalletNotFoundError, WalletInactiveError,
      ValidationError, IdempotencyConflictError.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from escrow_kernel.domain.clock import Clock
from escrow_kernel.domain.dtos import (
    EscrowPresent,
    EscrowReceipt,
    EscrowState,
    EscrowStatus,
    EscrowUninitialized,
)
from escrow_kernel.domain.money import require_non_negative_amount, require_positive_amount
from escrow_kernel.exceptions import (
    ContractNotFoundError,
    EscrowAccountClosedError,
    EscrowNotClosableError,
    EscrowNotInitializedError,
    IdempotencyConflictError,
    InsufficientFundsError,
)
from escrow_kernel.logging_config import LogContext, get_logger
from escrow_kernel.models.contract import Contract, ContractStatus
from escrow_kernel.models.escrow import (
    EscrowAccount,
    EscrowAccountStatus,
    EscrowTransaction,
    EscrowTransactionType,
)
from escrow_kernel.models.wallet import Wallet
from escrow_kernel.services.access_policy import AccessPolicy, ContractParties, ContractRole
from escrow_kernel.services.base import BaseService
from escrow_kernel.services.wallet_ledger import WalletLedger
from escrow_kernel.utils.ids import coerce_uuid

logger = get_logger("services.escrow_engine")


class EscrowEngine(BaseService[EscrowAccount]):
    """
    Escrow account operations.

    Contract:
        Amounts are integer minor units.  Every public operation is one
        atomic unit (SAVEPOINT) inside the caller's transaction.
    """

    def __init__(
        self,
        session: Session,
        wallets: WalletLedger | None = None,
        clock: Clock | None = None,
        access_policy: AccessPolicy | None = None,
    ):
        super().__init__(session, clock)
        self.wallets = wallets or WalletLedger(session, self.clock)
        self.access = access_policy or AccessPolicy()

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def _lock_account(self, contract_id: UUID) -> EscrowAccount:
        """Locked escrow row for the contract.  Distinguishes the two misses."""
        account = self._locked(
            select(EscrowAccount).where(EscrowAccount.contract_id == contract_id)
        )
        if account is not None:
            return account
        if self.session.get(Contract, contract_id) is None:
            raise ContractNotFoundError(str(contract_id))
        raise EscrowNotInitializedError(str(contract_id))

    def _append(
        self,
        account: EscrowAccount,
        tx_type: EscrowTransactionType,
        amount: int,
        description: str,
        source_wallet_id: UUID | None = None,
        destination_wallet_id: UUID | None = None,
        milestone_id: UUID | None = None,
        idempotency_key: str | None = None,
    ) -> EscrowTransaction:
        account.entry_count += 1
        tx = EscrowTransaction(
            escrow_account_id=account.id,
            entry_number=account.entry_count,
            amount=amount,
            type=tx_type.value,
            source_wallet_id=source_wallet_id,
            destination_wallet_id=destination_wallet_id,
            milestone_id=milestone_id,
            description=description,
            idempotency_key=idempotency_key,
            created_at=self.clock.now(),
        )
        self.session.add(tx)
        self.session.flush()
        return tx

    @staticmethod
    def _parties(account: EscrowAccount) -> ContractParties:
        return ContractParties(
            contract_id=account.contract_id,
            client_id=account.client_id,
            freelancer_id=account.freelancer_id,
        )

    @staticmethod
    def _receipt(
        account: EscrowAccount, tx: EscrowTransaction, replayed: bool = False
    ) -> EscrowReceipt:
        tx_type = tx.type.value if isinstance(tx.type, EscrowTransactionType) else tx.type
        return EscrowReceipt(
            transaction_id=tx.id,
            contract_id=account.contract_id,
            transaction_type=tx_type,
            amount=tx.amount,
            held_amount=account.held_amount,
            idempotency_key=tx.idempotency_key,
            replayed=replayed,
        )

    def _require_client(self, contract_id: UUID, user_id: UUID) -> None:
        account = self._lock_account(contract_id)
        self.access.require(ContractRole.CLIENT, self._parties(account), user_id)

    @staticmethod
    def _require_active(account: EscrowAccount) -> None:
        if account.status != EscrowAccountStatus.ACTIVE:
            raise EscrowAccountClosedError(str(account.contract_id), account.status)

    # ------------------------------------------------------------------
    # Idempotency
    # ------------------------------------------------------------------

    def find_by_idempotency_key(self, idempotency_key: str) -> EscrowTransaction | None:
        return self.session.execute(
            select(EscrowTransaction).where(
                EscrowTransaction.idempotency_key == idempotency_key
            )
        ).scalar_one_or_none()

    def _find_replay(
        self,
        idempotency_key: str | None,
        contract_id: UUID,
        tx_type: EscrowTransactionType,
        amount: int,
        milestone_id: UUID | None = None,
    ) -> EscrowReceipt | None:
        if idempotency_key is None:
            return None
        tx = self.find_by_idempotency_key(idempotency_key)
        if tx is None:
            return None

        account = self.session.get(EscrowAccount, tx.escrow_account_id)
        if (
            tx.type != tx_type
            or tx.amount != amount
            or account.contract_id != contract_id
            or (milestone_id is not None and tx.milestone_id != milestone_id)
        ):
            raise IdempotencyConflictError(
                idempotency_key,
                expected=f"{tx.type} of {tx.amount} on contract {account.contract_id}",
                received=f"{tx_type.value} of {amount} on contract {contract_id}",
            )

        logger.info(
            "escrow_operation_replayed",
            extra={"contract_id": str(contract_id), "transaction_type": tx_type.value},
        )
        return self._receipt(account, tx, replayed=True)

    def _run_idempotent(
        self, idempotency_key, replay_args, operation, authorize=None
    ) -> EscrowReceipt:
        try:
            with self.atomic():
                if authorize is not None:
                    authorize()
                replay = self._find_replay(idempotency_key, *replay_args)
                if replay is not None:
                    return replay
                return operation()
        except IntegrityError:
            if idempotency_key is None:
                raise
            with self.atomic():
                if authorize is not None:
                    authorize()
                replay = self._find_replay(idempotency_key, *replay_args)
            if replay is None:
                raise
            return replay

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def open_account(self, contract_id: UUID | str, initial_amount: int = 0) -> EscrowStatus:
        """
        Open the escrow account for a contract; no-op if it already exists.

        ``initial_amount`` is funding already captured outside the kernel
        (e.g. by the payment provider at contract signing).
        """
        cid = coerce_uuid(contract_id, "contract_id")
        initial_amount = require_non_negative_amount(initial_amount, "initial_amount")

        with self.atomic():
            existing = self._locked(
                select(EscrowAccount).where(EscrowAccount.contract_id == cid)
            )
            if existing is not None:
                return EscrowStatus.from_model(existing)

            contract = self.session.get(Contract, cid)
            if contract is None:
                raise ContractNotFoundError(str(cid))

            account = EscrowAccount(
                contract_id=cid,
                client_id=contract.client_id,
                freelancer_id=contract.freelancer_id,
                held_amount=initial_amount,
                initial_amount=initial_amount,
                status=EscrowAccountStatus.ACTIVE.value,
                entry_count=0,
            )
            self.session.add(account)
            self.session.flush()

        logger.info(
            "escrow_account_opened",
            extra={"contract_id": str(cid), "initial_amount": initial_amount},
        )
        return EscrowStatus.from_model(account)

    def deposit(
        self,
        client_id: UUID | str,
        contract_id: UUID | str,
        amount: int,
        idempotency_key: str | None = None,
    ) -> EscrowReceipt:
        """Move ``amount`` from the client's available balance into escrow."""
        uid = coerce_uuid(client_id, "client_id")
        cid = coerce_uuid(contract_id, "contract_id")
        amount = require_positive_amount(amount)

        def _apply() -> EscrowReceipt:
            account = self._lock_account(cid)
            self._require_active(account)
            wallet, _ = self.wallets.hold_available(uid, amount, cid)
            account.held_amount += amount
            tx = self._append(
                account,
                EscrowTransactionType.DEPOSIT,
                amount,
                description=f"Deposit for contract {cid}",
                source_wallet_id=wallet.id,
                idempotency_key=idempotency_key,
            )
            logger.info(
                "escrow_deposited",
                extra={"amount": amount, "held_amount": account.held_amount},
            )
            return self._receipt(account, tx)

        with LogContext.bind(actor_id=uid, contract_id=cid, idempotency_key=idempotency_key):
            return self._run_idempotent(
                idempotency_key,
                (cid, EscrowTransactionType.DEPOSIT, amount),
                _apply,
                authorize=lambda: self._require_client(cid, uid),
            )

    def release(
        self,
        client_id: UUID | str,
        contract_id: UUID | str,
        amount: int,
        idempotency_key: str | None = None,
        *,
        milestone_id: UUID | None = None,
    ) -> EscrowReceipt:
        """Release ``amount`` from escrow into the freelancer's pending balance."""
        uid = coerce_uuid(client_id, "client_id")
        cid = coerce_uuid(contract_id, "contract_id")
        amount = require_positive_amount(amount)

        def _apply() -> EscrowReceipt:
            account = self._lock_account(cid)
            self._require_active(account)
            if account.held_amount < amount:
                raise InsufficientFundsError(
                    "held_amount", str(cid), amount, account.held_amount
                )
            account.held_amount -= amount
            credit = self.wallets.credit_pending(
                account.freelancer_id,
                amount,
                related_id=str(cid),
                details={
                    "source": "Milestone Completion (Pending)",
                    "contract_id": str(cid),
                    **({"milestone_id": str(milestone_id)} if milestone_id else {}),
                },
            )
            destination = self.session.execute(
                select(Wallet.id).where(Wallet.user_id == account.freelancer_id)
            ).scalar_one()
            description = (
                f"Release for milestone {milestone_id} of contract {cid}"
                if milestone_id
                else f"Release for contract {cid}"
            )
            tx = self._append(
                account,
                EscrowTransactionType.RELEASE,
                amount,
                description=description,
                destination_wallet_id=destination,
                milestone_id=milestone_id,
                idempotency_key=idempotency_key,
            )
            logger.info(
                "escrow_released",
                extra={
                    "amount": amount,
                    "held_amount": account.held_amount,
                    "freelancer_pending": credit.pending_balance,
                },
            )
            return self._receipt(account, tx)

        with LogContext.bind(actor_id=uid, contract_id=cid, idempotency_key=idempotency_key):
            return self._run_idempotent(
                idempotency_key,
                (cid, EscrowTransactionType.RELEASE, amount, milestone_id),
                _apply,
                authorize=lambda: self._require_client(cid, uid),
            )

    def refund(
        self,
        contract_id: UUID | str,
        amount: int,
        idempotency_key: str | None = None,
    ) -> EscrowReceipt:
        """Return ``amount`` from escrow to the client's available balance."""
        cid = coerce_uuid(contract_id, "contract_id")
        amount = require_positive_amount(amount)

        def _apply() -> EscrowReceipt:
            account = self._lock_account(cid)
            if account.held_amount < amount:
                raise InsufficientFundsError(
                    "held_amount", str(cid), amount, account.held_amount
                )
            account.held_amount -= amount
            wallet, _ = self.wallets.refund_available(account.client_id, amount, cid)
            tx = self._append(
                account,
                EscrowTransactionType.REFUND,
                amount,
                description=f"Refund for contract {cid}",
                destination_wallet_id=wallet.id,
                idempotency_key=idempotency_key,
            )
            logger.info(
                "escrow_refunded",
                extra={"amount": amount, "held_amount": account.held_amount},
            )
            return self._receipt(account, tx)

        with LogContext.bind(contract_id=cid, idempotency_key=idempotency_key):
            return self._run_idempotent(
                idempotency_key, (cid, EscrowTransactionType.REFUND, amount), _apply
            )

    def close_account(self, contract_id: UUID | str) -> EscrowStatus:
        """
        Close an emptied escrow account once its contract has ended.

        A COMPLETED contract closes the account as COMPLETED, a TERMINATED
        one as CANCELED.  Closing an already closed account is a no-op.
        Funds still held must be released or refunded first.
        """
        cid = coerce_uuid(contract_id, "contract_id")

        with self.atomic():
            account = self._lock_account(cid)
            if account.status != EscrowAccountStatus.ACTIVE:
                return EscrowStatus.from_model(account)

            contract = self.session.get(Contract, cid)
            if contract.status == ContractStatus.COMPLETED:
                target = EscrowAccountStatus.COMPLETED
            elif contract.status == ContractStatus.TERMINATED:
                target = EscrowAccountStatus.CANCELED
            else:
                raise EscrowNotClosableError(str(cid), f"contract is {contract.status}")
            if account.held_amount:
                raise EscrowNotClosableError(
                    str(cid), f"still holds {account.held_amount}"
                )

            account.status = target.value
            self.session.flush()

        logger.info(
            "escrow_account_closed",
            extra={"contract_id": str(cid), "status": target.value},
        )
        return EscrowStatus.from_model(account)

    def get_status(self, contract_id: UUID | str) -> EscrowState:
        """
        The contract's escrow amounts, in major units.

        Returns EscrowUninitialized when the contract exists but has no
        account.  Raises ContractNotFoundError when the contract is unknown.
        """
        cid = coerce_uuid(contract_id, "contract_id")
        account = self.session.execute(
            select(EscrowAccount).where(EscrowAccount.contract_id == cid)
        ).scalar_one_or_none()
        if account is not None:
            return EscrowPresent(EscrowStatus.from_model(account))
        if self.session.get(Contract, cid) is None:
            raise ContractNotFoundError(str(cid))
        return EscrowUninitialized(contract_id=cid)
