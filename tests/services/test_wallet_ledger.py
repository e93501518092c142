"""
Tests for WalletLedger.

Covers:
- Wallet initialization (idempotent, unknown user)
- Top-ups, pending credits, pending clearing, payout deductions
- Non-negative balances and one log row per balance change
- Only ACTIVE freelancers receive pending credits
- Idempotent replay and key conflicts
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from escrow_kernel.exceptions import (
    IdempotencyConflictError,
    InsufficientFundsError,
    UserNotFoundError,
    ValidationError,
    WalletInactiveError,
    WalletNotFoundError,
)
from escrow_kernel.models.user import UserRole, UserStatus
from escrow_kernel.models.wallet import Wallet, WalletTransaction


def _tx_count(session, user_id) -> int:
    return session.execute(
        select(func.count(WalletTransaction.id))
        .join(Wallet, Wallet.id == WalletTransaction.wallet_id)
        .where(Wallet.user_id == user_id)
    ).scalar_one()


class TestInitializeWallet:

    def test_creates_zero_balance_wallet(self, wallet_ledger, client_user):
        balance = wallet_ledger.initialize_wallet(client_user.id)

        assert balance.user_id == client_user.id
        assert balance.available_balance == Decimal("0.00")
        assert balance.pending_balance == Decimal("0.00")
        assert balance.total_balance == Decimal("0.00")

    def test_second_call_is_noop(self, session, wallet_ledger, fund_wallet, client_user):
        wallet_ledger.initialize_wallet(client_user.id)
        fund_wallet(client_user.id, 2500)

        balance = wallet_ledger.initialize_wallet(client_user.id)

        assert balance.available_balance == Decimal("25.00")
        wallets = session.execute(
            select(func.count(Wallet.id)).where(Wallet.user_id == client_user.id)
        ).scalar_one()
        assert wallets == 1

    def test_unknown_user(self, wallet_ledger):
        with pytest.raises(UserNotFoundError):
            wallet_ledger.initialize_wallet(uuid4())

    def test_malformed_user_id(self, wallet_ledger):
        with pytest.raises(ValidationError) as exc_info:
            wallet_ledger.initialize_wallet("not-a-uuid")
        assert exc_info.value.field == "user_id"


class TestCreditAvailable:

    def test_creates_wallet_on_first_top_up(self, wallet_ledger, client_user):
        receipt = wallet_ledger.credit_available(client_user.id, 15000, reference_id="pi_1")

        assert receipt.transaction_type == "DEPOSIT"
        assert receipt.amount == 15000
        assert receipt.available_balance == 15000
        assert receipt.pending_balance == 0
        assert receipt.replayed is False
        assert wallet_ledger.get_wallet(client_user.id).available_balance == Decimal("150.00")

    def test_records_external_reference(self, ledger_selector, wallet_ledger, client_user):
        wallet_ledger.credit_available(client_user.id, 500, reference_id="pi_ref")

        history = ledger_selector.wallet_history(client_user.id)

        assert len(history) == 1
        assert history[0].related_id == "pi_ref"
        assert history[0].details["source"] == "external_payment"

    @pytest.mark.parametrize("amount", [0, -100])
    def test_rejects_non_positive_amount(self, wallet_ledger, client_user, amount):
        with pytest.raises(ValidationError):
            wallet_ledger.credit_available(client_user.id, amount, reference_id="pi")

    def test_requires_reference(self, wallet_ledger, client_user):
        with pytest.raises(ValidationError) as exc_info:
            wallet_ledger.credit_available(client_user.id, 100, reference_id="")
        assert exc_info.value.field == "reference_id"

    def test_replay_returns_original_receipt(self, session, wallet_ledger, client_user):
        first = wallet_ledger.credit_available(
            client_user.id, 1000, reference_id="pi_9", idempotency_key="topup-9"
        )
        second = wallet_ledger.credit_available(
            client_user.id, 1000, reference_id="pi_9", idempotency_key="topup-9"
        )

        assert second.replayed is True
        assert second.transaction_id == first.transaction_id
        assert wallet_ledger.get_wallet(client_user.id).available_balance == Decimal("10.00")
        assert _tx_count(session, client_user.id) == 1

    def test_key_reused_with_different_amount(self, wallet_ledger, client_user):
        wallet_ledger.credit_available(
            client_user.id, 1000, reference_id="pi_9", idempotency_key="topup-9"
        )
        with pytest.raises(IdempotencyConflictError) as exc_info:
            wallet_ledger.credit_available(
                client_user.id, 2000, reference_id="pi_9", idempotency_key="topup-9"
            )
        assert exc_info.value.idempotency_key == "topup-9"
        assert wallet_ledger.get_wallet(client_user.id).available_balance == Decimal("10.00")

    def test_key_reused_for_other_user(self, wallet_ledger, client_user, outsider_user):
        wallet_ledger.credit_available(
            client_user.id, 1000, reference_id="pi_9", idempotency_key="topup-9"
        )
        with pytest.raises(IdempotencyConflictError):
            wallet_ledger.credit_available(
                outsider_user.id, 1000, reference_id="pi_9", idempotency_key="topup-9"
            )


class TestCreditPending:

    def test_credits_active_freelancer(self, wallet_ledger, freelancer_user):
        wallet_ledger.initialize_wallet(freelancer_user.id)

        receipt = wallet_ledger.credit_pending(freelancer_user.id, 4000, related_id="c-1")

        assert receipt.transaction_type == "RELEASE"
        assert receipt.pending_balance == 4000
        assert receipt.available_balance == 0

    def test_requires_existing_wallet(self, wallet_ledger, freelancer_user):
        with pytest.raises(WalletNotFoundError):
            wallet_ledger.credit_pending(freelancer_user.id, 4000)

    def test_rejects_client_wallet(self, wallet_ledger, client_user):
        wallet_ledger.initialize_wallet(client_user.id)
        with pytest.raises(WalletInactiveError):
            wallet_ledger.credit_pending(client_user.id, 4000)

    @pytest.mark.parametrize("status", [UserStatus.SUSPENDED, UserStatus.BANNED])
    def test_rejects_inactive_freelancer(self, session, wallet_ledger, make_user, status):
        freelancer = make_user(UserRole.FREELANCER, status=status)
        wallet_ledger.initialize_wallet(freelancer.id)

        with pytest.raises(WalletInactiveError) as exc_info:
            wallet_ledger.credit_pending(freelancer.id, 4000)

        assert status.value in exc_info.value.reason
        assert wallet_ledger.get_wallet(freelancer.id).pending_balance == Decimal("0.00")
        assert _tx_count(session, freelancer.id) == 0


class TestMovePendingToAvailable:

    def test_clears_pending(self, wallet_ledger, freelancer_user):
        wallet_ledger.initialize_wallet(freelancer_user.id)
        wallet_ledger.credit_pending(freelancer_user.id, 4000)

        receipt = wallet_ledger.move_pending_to_available(freelancer_user.id, 3000)

        assert receipt.transaction_type == "ADJUSTMENT"
        assert receipt.pending_balance == 1000
        assert receipt.available_balance == 3000

    def test_insufficient_pending(self, session, wallet_ledger, freelancer_user):
        wallet_ledger.initialize_wallet(freelancer_user.id)
        wallet_ledger.credit_pending(freelancer_user.id, 4000)

        with pytest.raises(InsufficientFundsError) as exc_info:
            wallet_ledger.move_pending_to_available(freelancer_user.id, 4001)

        assert exc_info.value.account == "pending_balance"
        assert exc_info.value.available == 4000
        balance = wallet_ledger.get_wallet(freelancer_user.id)
        assert balance.pending_balance == Decimal("40.00")
        assert balance.available_balance == Decimal("0.00")
        assert _tx_count(session, freelancer_user.id) == 1

    def test_missing_wallet(self, wallet_ledger, freelancer_user):
        with pytest.raises(WalletNotFoundError):
            wallet_ledger.move_pending_to_available(freelancer_user.id, 1)

    def test_replay(self, wallet_ledger, freelancer_user):
        wallet_ledger.initialize_wallet(freelancer_user.id)
        wallet_ledger.credit_pending(freelancer_user.id, 4000)

        wallet_ledger.move_pending_to_available(freelancer_user.id, 1000, idempotency_key="clear-1")
        replay = wallet_ledger.move_pending_to_available(
            freelancer_user.id, 1000, idempotency_key="clear-1"
        )

        assert replay.replayed is True
        assert wallet_ledger.get_wallet(freelancer_user.id).pending_balance == Decimal("30.00")


class TestProcessPayoutDeduction:

    def test_deducts_available(self, wallet_ledger, fund_wallet, client_user):
        fund_wallet(client_user.id, 5000)

        receipt = wallet_ledger.process_payout_deduction(client_user.id, 2000, payout_id="po_1")

        assert receipt.transaction_type == "WITHDRAWAL"
        assert receipt.available_balance == 3000

    def test_overdraft_rejected(self, session, wallet_ledger, fund_wallet, client_user):
        fund_wallet(client_user.id, 5000)

        with pytest.raises(InsufficientFundsError) as exc_info:
            wallet_ledger.process_payout_deduction(client_user.id, 5001, payout_id="po_1")

        assert exc_info.value.required == 5001
        assert wallet_ledger.get_wallet(client_user.id).available_balance == Decimal("50.00")
        assert _tx_count(session, client_user.id) == 1

    def test_requires_payout_id(self, wallet_ledger, fund_wallet, client_user):
        fund_wallet(client_user.id, 5000)
        with pytest.raises(ValidationError):
            wallet_ledger.process_payout_deduction(client_user.id, 100, payout_id="")

    def test_key_reused_for_other_payout(self, wallet_ledger, fund_wallet, client_user):
        fund_wallet(client_user.id, 5000)
        wallet_ledger.process_payout_deduction(
            client_user.id, 100, payout_id="po_1", idempotency_key="payout-1"
        )
        with pytest.raises(IdempotencyConflictError):
            wallet_ledger.process_payout_deduction(
                client_user.id, 100, payout_id="po_2", idempotency_key="payout-1"
            )


class TestGetWallet:

    def test_missing(self, wallet_ledger, client_user):
        with pytest.raises(WalletNotFoundError):
            wallet_ledger.get_wallet(client_user.id)

    def test_major_units(self, wallet_ledger, fund_wallet, freelancer_user):
        fund_wallet(freelancer_user.id, 12345)
        wallet_ledger.credit_pending(freelancer_user.id, 55)

        balance = wallet_ledger.get_wallet(freelancer_user.id)

        assert balance.available_balance == Decimal("123.45")
        assert balance.pending_balance == Decimal("0.55")
        assert balance.total_balance == Decimal("124.00")


def test_entry_numbers_are_consecutive(ledger_selector, wallet_ledger, fund_wallet, client_user):
    for _ in range(3):
        fund_wallet(client_user.id, 100)
    wallet_ledger.process_payout_deduction(client_user.id, 50, payout_id="po")

    history = ledger_selector.wallet_history(client_user.id)

    assert [tx.entry_number for tx in history] == [1, 2, 3, 4]
    assert [tx.transaction_type for tx in history] == ["DEPOSIT", "DEPOSIT", "DEPOSIT", "WITHDRAWAL"]
