"""
WalletLedger -- the only writer of Wallet balances.

Responsibility:
    Owns each user's ``available_balance`` and ``pending_balance``.  Every
    change is paired, in the same atomic unit, with exactly one
    WalletTransaction row.

Architecture position:
    Kernel > Services.  Called directly by callers for wallet operations and
    by EscrowEngine for the wallet side of deposits, releases and refunds.

Invariants enforced:
    - Balances never go negative: the check and the mutation happen on the
      wallet row under ``SELECT ... FOR UPDATE`` (and the table carries
      CHECK constraints as a backstop).
    - Exactly one WalletTransaction per balance change; its
      ``entry_number`` is the wallet's incremented ``entry_count``.
    - Only an ACTIVE FREELANCER's wallet can receive escrow releases.
    - Idempotency: a replayed key returns the original receipt with
      ``replayed=True`` and changes nothing; the same key with different
      parameters raises IdempotencyConflictError.

Failure modes:
    - WalletNotFoundError, UserNotFoundError, WalletInactiveError,
      InsufficientFundsError, ValidationError, IdempotencyConflictError.

Money flow:
    credit_available          external payment  -> available  (DEPOSIT)
    hold_available            available  -> escrow           (HOLD)
    credit_pending            escrow     -> pending          (RELEASE)
    refund_available          escrow     -> available        (ADJUSTMENT)
    move_pending_to_available pending    -> available        (ADJUSTMENT)
    process_payout_deduction  available  -> payout           (WITHDRAWAL)
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from escrow_kernel.domain.dtos import WalletBalance, WalletReceipt
from escrow_kernel.domain.money import require_positive_amount
from escrow_kernel.exceptions import (
    IdempotencyConflictError,
    InsufficientFundsError,
    UserNotFoundError,
    ValidationError,
    WalletInactiveError,
    WalletNotFoundError,
)
from escrow_kernel.logging_config import LogContext, get_logger
from escrow_kernel.models.user import User
from escrow_kernel.models.wallet import Wallet, WalletTransaction, WalletTransactionType
from escrow_kernel.services.base import BaseService
from escrow_kernel.utils.ids import coerce_uuid

logger = get_logger("services.wallet_ledger")


class WalletLedger(BaseService[Wallet]):
    """
    Wallet balance operations.

    Contract:
        Amounts are integer minor units.  Every public operation is one
        atomic unit (SAVEPOINT) inside the caller's transaction; the
        ``hold_available`` / ``refund_available`` helpers run inside the
        caller's unit and are meant for EscrowEngine only.
    """

    # ------------------------------------------------------------------
    # Wallet rows
    # ------------------------------------------------------------------

    def _lock_wallet(self, user_id: UUID) -> Wallet | None:
        return self._locked(select(Wallet).where(Wallet.user_id == user_id))

    def _require_wallet(self, user_id: UUID) -> Wallet:
        wallet = self._lock_wallet(user_id)
        if wallet is None:
            raise WalletNotFoundError(str(user_id))
        return wallet

    def _lock_or_create_wallet(self, user_id: UUID) -> Wallet:
        wallet = self._lock_wallet(user_id)
        if wallet is not None:
            return wallet

        if self.session.get(User, user_id) is None:
            raise UserNotFoundError(str(user_id))

        # Concurrent first use: the unique user_id constraint picks a winner
        savepoint = self.session.begin_nested()
        try:
            wallet = Wallet(
                user_id=user_id,
                available_balance=0,
                pending_balance=0,
                entry_count=0,
            )
            self.session.add(wallet)
            self.session.flush()
            savepoint.commit()
            logger.info("wallet_initialized", extra={"user_id": str(user_id)})
            return wallet
        except IntegrityError:
            savepoint.rollback()
            logger.debug("wallet_create_race_retry", extra={"user_id": str(user_id)})
            return self._require_wallet(user_id)

    def _append(
        self,
        wallet: Wallet,
        tx_type: WalletTransactionType,
        amount: int,
        related_id: str | None = None,
        details: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> WalletTransaction:
        wallet.entry_count += 1
        tx = WalletTransaction(
            wallet_id=wallet.id,
            entry_number=wallet.entry_count,
            amount=amount,
            type=tx_type.value,
            related_id=related_id,
            details=details,
            idempotency_key=idempotency_key,
            created_at=self.clock.now(),
        )
        self.session.add(tx)
        self.session.flush()
        return tx

    def _receipt(
        self,
        wallet: Wallet,
        tx: WalletTransaction,
        replayed: bool = False,
    ) -> WalletReceipt:
        return WalletReceipt(
            transaction_id=tx.id,
            user_id=wallet.user_id,
            transaction_type=tx.type.value if isinstance(tx.type, WalletTransactionType) else tx.type,
            amount=tx.amount,
            available_balance=wallet.available_balance,
            pending_balance=wallet.pending_balance,
            idempotency_key=tx.idempotency_key,
            replayed=replayed,
        )

    # ------------------------------------------------------------------
    # Idempotency
    # ------------------------------------------------------------------

    def _find_replay(
        self,
        idempotency_key: str | None,
        user_id: UUID,
        tx_type: WalletTransactionType,
        amount: int,
        related_id: str | None = None,
    ) -> WalletReceipt | None:
        """
        Receipt of an earlier application of ``idempotency_key``, or None.

        Raises IdempotencyConflictError if the key was used for anything
        other than this exact operation.
        """
        if idempotency_key is None:
            return None
        tx = self.session.execute(
            select(WalletTransaction).where(
                WalletTransaction.idempotency_key == idempotency_key
            )
        ).scalar_one_or_none()
        if tx is None:
            return None

        wallet = self.session.get(Wallet, tx.wallet_id)
        expected = f"{tx.type} of {tx.amount} on wallet of {wallet.user_id}"
        received = f"{tx_type.value} of {amount} on wallet of {user_id}"
        if (
            tx.type != tx_type
            or tx.amount != amount
            or wallet.user_id != user_id
            or (related_id is not None and tx.related_id != related_id)
        ):
            raise IdempotencyConflictError(idempotency_key, expected, received)

        logger.info(
            "wallet_operation_replayed",
            extra={"user_id": str(user_id), "transaction_type": tx_type.value},
        )
        return self._receipt(wallet, tx, replayed=True)

    def _run_idempotent(self, idempotency_key, replay_args, operation) -> WalletReceipt:
        """
        Run ``operation`` atomically unless ``idempotency_key`` was already
        applied.  A concurrent first use that loses the unique-key race is
        answered from the winner's row.
        """
        try:
            with self.atomic():
                replay = self._find_replay(idempotency_key, *replay_args)
                if replay is not None:
                    return replay
                return operation()
        except IntegrityError:
            if idempotency_key is None:
                raise
            with self.atomic():
                replay = self._find_replay(idempotency_key, *replay_args)
            if replay is None:
                raise
            return replay

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def initialize_wallet(self, user_id: UUID | str) -> WalletBalance:
        """Create a zero-balance wallet for the user; no-op if it exists."""
        uid = coerce_uuid(user_id, "user_id")
        with self.atomic():
            wallet = self._lock_or_create_wallet(uid)
        return WalletBalance.from_model(wallet)

    def credit_available(
        self,
        user_id: UUID | str,
        amount: int,
        reference_id: str,
        idempotency_key: str | None = None,
    ) -> WalletReceipt:
        """
        Record an externally settled top-up (DEPOSIT into available).

        ``reference_id`` identifies the external payment.  The wallet is
        created if the user has none yet.
        """
        uid = coerce_uuid(user_id, "user_id")
        amount = require_positive_amount(amount)
        if not reference_id:
            raise ValidationError("reference_id", "is required")

        def _apply() -> WalletReceipt:
            wallet = self._lock_or_create_wallet(uid)
            wallet.available_balance += amount
            tx = self._append(
                wallet,
                WalletTransactionType.DEPOSIT,
                amount,
                related_id=str(reference_id),
                details={"source": "external_payment"},
                idempotency_key=idempotency_key,
            )
            logger.info(
                "wallet_credited",
                extra={
                    "user_id": str(uid),
                    "amount": amount,
                    "available_balance": wallet.available_balance,
                },
            )
            return self._receipt(wallet, tx)

        with LogContext.bind(actor_id=uid, idempotency_key=idempotency_key):
            return self._run_idempotent(
                idempotency_key,
                (uid, WalletTransactionType.DEPOSIT, amount, str(reference_id)),
                _apply,
            )

    def credit_pending(
        self,
        user_id: UUID | str,
        amount: int,
        *,
        related_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> WalletReceipt:
        """
        Credit a freelancer's pending balance (RELEASE).

        Requires an existing wallet whose owner is an ACTIVE FREELANCER.
        """
        uid = coerce_uuid(user_id, "user_id")
        amount = require_positive_amount(amount)

        with self.atomic():
            wallet = self._require_wallet(uid)
            user = self.session.get(User, uid)
            if user is None or not user.is_active_freelancer:
                reason = (
                    "user not found"
                    if user is None
                    else f"owner is {user.role} with status {user.status}"
                )
                logger.warning(
                    "wallet_credit_rejected",
                    extra={"user_id": str(uid), "reason": reason},
                )
                raise WalletInactiveError(str(uid), reason)

            wallet.pending_balance += amount
            tx = self._append(
                wallet,
                WalletTransactionType.RELEASE,
                amount,
                related_id=related_id,
                details=details or {"source": "Milestone Completion (Pending)"},
            )

        logger.info(
            "wallet_pending_credited",
            extra={
                "user_id": str(uid),
                "amount": amount,
                "pending_balance": wallet.pending_balance,
            },
        )
        return self._receipt(wallet, tx)

    def move_pending_to_available(
        self,
        user_id: UUID | str,
        amount: int,
        idempotency_key: str | None = None,
    ) -> WalletReceipt:
        """Clear pending funds into available (ADJUSTMENT)."""
        uid = coerce_uuid(user_id, "user_id")
        amount = require_positive_amount(amount)

        def _apply() -> WalletReceipt:
            wallet = self._require_wallet(uid)
            if wallet.pending_balance < amount:
                raise InsufficientFundsError(
                    "pending_balance", str(uid), amount, wallet.pending_balance
                )
            wallet.pending_balance -= amount
            wallet.available_balance += amount
            tx = self._append(
                wallet,
                WalletTransactionType.ADJUSTMENT,
                amount,
                details={"source": "pending_to_available"},
                idempotency_key=idempotency_key,
            )
            logger.info(
                "wallet_pending_cleared",
                extra={
                    "user_id": str(uid),
                    "amount": amount,
                    "available_balance": wallet.available_balance,
                    "pending_balance": wallet.pending_balance,
                },
            )
            return self._receipt(wallet, tx)

        with LogContext.bind(actor_id=uid, idempotency_key=idempotency_key):
            return self._run_idempotent(
                idempotency_key,
                (uid, WalletTransactionType.ADJUSTMENT, amount),
                _apply,
            )

    def process_payout_deduction(
        self,
        user_id: UUID | str,
        amount: int,
        payout_id: str,
        idempotency_key: str | None = None,
    ) -> WalletReceipt:
        """Deduct a payout from available (WITHDRAWAL, related to the payout)."""
        uid = coerce_uuid(user_id, "user_id")
        amount = require_positive_amount(amount)
        if not payout_id:
            raise ValidationError("payout_id", "is required")

        def _apply() -> WalletReceipt:
            wallet = self._require_wallet(uid)
            if wallet.available_balance < amount:
                raise InsufficientFundsError(
                    "available_balance", str(uid), amount, wallet.available_balance
                )
            wallet.available_balance -= amount
            tx = self._append(
                wallet,
                WalletTransactionType.WITHDRAWAL,
                amount,
                related_id=str(payout_id),
                details={"source": "payout"},
                idempotency_key=idempotency_key,
            )
            logger.info(
                "wallet_payout_deducted",
                extra={
                    "user_id": str(uid),
                    "payout_id": str(payout_id),
                    "amount": amount,
                    "available_balance": wallet.available_balance,
                },
            )
            return self._receipt(wallet, tx)

        with LogContext.bind(actor_id=uid, idempotency_key=idempotency_key):
            return self._run_idempotent(
                idempotency_key,
                (uid, WalletTransactionType.WITHDRAWAL, amount, str(payout_id)),
                _apply,
            )

    def get_wallet(self, user_id: UUID | str) -> WalletBalance:
        uid = coerce_uuid(user_id, "user_id")
        wallet = self.session.execute(
            select(Wallet).where(Wallet.user_id == uid)
        ).scalar_one_or_none()
        if wallet is None:
            raise WalletNotFoundError(str(uid))
        return WalletBalance.from_model(wallet)

    # ------------------------------------------------------------------
    # Escrow-side helpers (run inside EscrowEngine's unit)
    # ------------------------------------------------------------------

    def hold_available(
        self, user_id: UUID, amount: int, contract_id: UUID
    ) -> tuple[Wallet, WalletTransaction]:
        """Move ``amount`` out of available into a contract escrow (HOLD)."""
        wallet = self._lock_wallet(user_id)
        available = wallet.available_balance if wallet is not None else 0
        if wallet is None or available < amount:
            raise InsufficientFundsError("available_balance", str(user_id), amount, available)
        wallet.available_balance -= amount
        tx = self._append(
            wallet,
            WalletTransactionType.HOLD,
            amount,
            related_id=str(contract_id),
            details={"source": "Escrow Deposit", "contract_id": str(contract_id)},
        )
        return wallet, tx

    def refund_available(
        self, user_id: UUID, amount: int, contract_id: UUID
    ) -> tuple[Wallet, WalletTransaction]:
        """Return ``amount`` from a contract escrow into available (ADJUSTMENT)."""
        wallet = self._lock_or_create_wallet(user_id)
        wallet.available_balance += amount
        tx = self._append(
            wallet,
            WalletTransactionType.ADJUSTMENT,
            amount,
            related_id=str(contract_id),
            details={"source": "Escrow Refund", "contract_id": str(contract_id)},
        )
        return wallet, tx
