"""
Exactly-once escrow movements.

A retried request carrying the same idempotency key must not move money a
second time; a key reused for a different movement is rejected.
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from escrow_kernel.exceptions import IdempotencyConflictError, UnauthorizedError
from escrow_kernel.models.escrow import EscrowTransaction


def _escrow_rows(session) -> int:
    return session.execute(select(func.count(EscrowTransaction.id))).scalar_one()


class TestDepositReplay:

    def test_retry_does_not_double_deposit(
        self, session, escrow_engine, wallet_ledger, fund_wallet, escrow_account, client_user, contract
    ):
        fund_wallet(client_user.id, 15000)

        first = escrow_engine.deposit(client_user.id, contract.id, 10000, idempotency_key="dep-1")
        second = escrow_engine.deposit(client_user.id, contract.id, 10000, idempotency_key="dep-1")

        assert first.replayed is False
        assert second.replayed is True
        assert second.transaction_id == first.transaction_id
        assert second.idempotency_key == "dep-1"
        assert escrow_engine.get_status(contract.id).escrow.held_amount == Decimal("100.00")
        assert wallet_ledger.get_wallet(client_user.id).available_balance == Decimal("50.00")
        assert _escrow_rows(session) == 1

    def test_replay_succeeds_after_balance_spent(
        self, escrow_engine, fund_wallet, escrow_account, client_user, contract
    ):
        fund_wallet(client_user.id, 10000)
        escrow_engine.deposit(client_user.id, contract.id, 10000, idempotency_key="dep-1")

        replay = escrow_engine.deposit(client_user.id, contract.id, 10000, idempotency_key="dep-1")

        assert replay.replayed is True

    def test_different_amount_conflicts(
        self, escrow_engine, fund_wallet, escrow_account, client_user, contract
    ):
        fund_wallet(client_user.id, 15000)
        escrow_engine.deposit(client_user.id, contract.id, 10000, idempotency_key="dep-1")

        with pytest.raises(IdempotencyConflictError) as exc_info:
            escrow_engine.deposit(client_user.id, contract.id, 2000, idempotency_key="dep-1")

        assert "10000" in exc_info.value.expected
        assert "2000" in exc_info.value.received

    def test_other_caller_cannot_replay(
        self, escrow_engine, fund_wallet, escrow_account, client_user, freelancer_user, contract
    ):
        fund_wallet(client_user.id, 15000)
        escrow_engine.deposit(client_user.id, contract.id, 10000, idempotency_key="dep-1")

        with pytest.raises(UnauthorizedError):
            escrow_engine.deposit(freelancer_user.id, contract.id, 10000, idempotency_key="dep-1")


class TestReleaseAndRefundReplay:

    def test_release_retry(self, session, escrow_engine, wallet_ledger, funded_escrow, client_user, freelancer_user, contract):
        escrow_engine.release(client_user.id, contract.id, 4000, idempotency_key="rel-1")
        replay = escrow_engine.release(client_user.id, contract.id, 4000, idempotency_key="rel-1")

        assert replay.replayed is True
        assert replay.held_amount == 6000
        assert wallet_ledger.get_wallet(freelancer_user.id).pending_balance == Decimal("40.00")

    def test_refund_retry(self, escrow_engine, wallet_ledger, funded_escrow, client_user, contract):
        escrow_engine.refund(contract.id, 1000, idempotency_key="ref-1")
        replay = escrow_engine.refund(contract.id, 1000, idempotency_key="ref-1")

        assert replay.replayed is True
        assert wallet_ledger.get_wallet(client_user.id).available_balance == Decimal("60.00")

    def test_key_reused_across_movement_types(self, escrow_engine, funded_escrow, client_user, contract):
        escrow_engine.release(client_user.id, contract.id, 1000, idempotency_key="k-1")

        with pytest.raises(IdempotencyConflictError):
            escrow_engine.refund(contract.id, 1000, idempotency_key="k-1")

    def test_key_reused_across_contracts(
        self, escrow_engine, wallet_ledger, make_contract, fund_wallet, funded_escrow, client_user, contract
    ):
        other = make_contract()
        escrow_engine.open_account(other.id)
        fund_wallet(client_user.id, 1000)
        escrow_engine.deposit(client_user.id, contract.id, 500, idempotency_key="dep-x")

        with pytest.raises(IdempotencyConflictError):
            escrow_engine.deposit(client_user.id, other.id, 500, idempotency_key="dep-x")

    def test_no_key_means_no_dedup(self, escrow_engine, funded_escrow, client_user, contract):
        escrow_engine.release(client_user.id, contract.id, 1000)
        receipt = escrow_engine.release(client_user.id, contract.id, 1000)

        assert receipt.replayed is False
        assert receipt.held_amount == 8000


def test_replay_is_logged(captured_logs, escrow_engine, funded_escrow, client_user, contract):
    escrow_engine.refund(contract.id, 1000, idempotency_key="ref-log")
    escrow_engine.refund(contract.id, 1000, idempotency_key="ref-log")

    messages = [r["message"] for r in captured_logs()]

    assert messages.count("escrow_refunded") == 1
    assert messages.count("escrow_operation_replayed") == 1
