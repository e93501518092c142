"""
Tests for LedgerStore: lifecycle, unit of work, and error translation.

These use their own file-backed SQLite store so that real commits do not
leak into the shared suite database.
"""

import sqlite3

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from escrow_config import get_active_config
from escrow_kernel.db.engine import LedgerStore, translate_db_error
from escrow_kernel.exceptions import (
    InsufficientFundsError,
    LockTimeoutError,
    TransactionConflictError,
)
from escrow_kernel.models.user import User
from escrow_kernel.services.user_service import UserService
from escrow_kernel.services.wallet_ledger import WalletLedger


@pytest.fixture
def file_store(tmp_path):
    store = LedgerStore(f"sqlite:///{tmp_path / 'ledger.db'}")
    store.connect()
    store.create_tables()
    yield store
    store.drop_tables()
    store.dispose()


class _PgDriverError(Exception):
    def __init__(self, message, pgcode):
        super().__init__(message)
        self.pgcode = pgcode


def _operational_error(message, pgcode=None):
    if pgcode is None:
        orig = sqlite3.OperationalError(message)
    else:
        orig = _PgDriverError(message, pgcode)
    return OperationalError("SELECT 1", {}, orig)


class TestLifecycle:

    def test_engine_requires_connect(self):
        store = LedgerStore("sqlite:///:memory:")
        with pytest.raises(RuntimeError, match="connect"):
            store.engine
        with pytest.raises(RuntimeError):
            store.session()

    def test_connect_is_idempotent(self):
        store = LedgerStore("sqlite:///:memory:")
        try:
            assert store.connect() is store.connect()
            assert store.is_postgres is False
        finally:
            store.dispose()

    def test_dispose_forgets_engine(self):
        store = LedgerStore("sqlite:///:memory:")
        store.connect()
        store.dispose()
        with pytest.raises(RuntimeError):
            store.engine

    def test_from_config(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ESCROW_DATABASE_URL", f"sqlite:///{tmp_path / 'x.db'}")
        config = get_active_config()

        store = LedgerStore.from_config(config)

        assert store.database_url.endswith("x.db")
        assert store.lock_timeout_ms == config.transactions.lock_timeout_ms
        assert store.pool_size == config.database.pool_size


class TestSessionScope:

    def test_commits_on_success(self, file_store):
        with file_store.session_scope() as session:
            UserService(session).register_user("kept@example.test", "Kept", "CLIENT")

        with file_store.session_scope() as session:
            emails = session.execute(select(User.email)).scalars().all()
        assert emails == ["kept@example.test"]

    def test_rolls_back_on_error(self, file_store):
        with pytest.raises(InsufficientFundsError):
            with file_store.session_scope() as session:
                user = UserService(session).register_user("gone@example.test", "Gone", "CLIENT")
                ledger = WalletLedger(session)
                ledger.credit_available(user.id, 100, reference_id="pi")
                ledger.process_payout_deduction(user.id, 500, payout_id="po")

        with file_store.session_scope() as session:
            assert session.execute(select(User)).first() is None

    def test_rollback_is_logged(self, file_store, captured_logs):
        with pytest.raises(ValueError):
            with file_store.session_scope():
                raise ValueError("boom")

        record = next(r for r in captured_logs() if r["message"] == "transaction_rolled_back")
        assert record["error_type"] == "ValueError"

    def test_translates_driver_errors(self, file_store):
        with pytest.raises(LockTimeoutError) as exc_info:
            with file_store.session_scope():
                raise _operational_error("database is locked")

        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert exc_info.value.retryable is True


class TestTranslateDbError:

    @pytest.mark.parametrize("pgcode", ["55P03", "57014"])
    def test_lock_timeouts(self, pgcode):
        assert isinstance(translate_db_error(_operational_error("timeout", pgcode)), LockTimeoutError)

    @pytest.mark.parametrize("pgcode", ["40001", "40P01"])
    def test_conflicts(self, pgcode):
        translated = translate_db_error(_operational_error("conflict", pgcode))
        assert isinstance(translated, TransactionConflictError)
        assert translated.http_status == 409

    def test_sqlite_busy(self):
        assert isinstance(translate_db_error(_operational_error("database is locked")), LockTimeoutError)

    def test_pool_exhaustion(self):
        assert isinstance(translate_db_error(PoolTimeoutError("QueuePool limit")), LockTimeoutError)

    def test_other_errors_unchanged(self):
        original = _operational_error("no such table: wallets")
        assert translate_db_error(original) is original
        plain = KeyError("x")
        assert translate_db_error(plain) is plain
