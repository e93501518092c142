"""
Module: escrow_kernel.db.engine
Responsibility: The ledger store.  Owns the SQLAlchemy engine and session
    factory, provides the transactional unit of work, applies bounded wait
    windows, and translates driver-level lock/serialization failures into
    typed retryable errors.
Architecture position: Kernel > DB.  May import from db/base.py, exceptions
    and logging_config.  MUST NOT import from services/, selectors/ or domain/
    (create_tables imports models lazily so Base.metadata is populated).

Invariants enforced:
    - No module-level engine.  A LedgerStore is constructed by the
      composition root and handed to whoever needs sessions; connect() and
      dispose() are the root's responsibility.
    - PostgreSQL runs at READ COMMITTED with explicit row locks
      (SELECT ... FOR UPDATE) taken by the services.
    - Every unit of work on PostgreSQL sets ``lock_timeout`` and
      ``statement_timeout`` (SET LOCAL), so no transaction waits unbounded.
    - session_scope() commits on success, rolls back on ANY exception.

Failure modes:
    - RuntimeError if session() is called before connect().
    - LockTimeoutError (retryable) on lock_not_available / query_canceled /
      SQLite "database is locked" / connection-pool exhaustion.
    - TransactionConflictError (retryable) on deadlock or serialization
      failure.

Audit relevance:
    All writes flow through session_scope(); its commit-or-rollback is what
    makes each request all-or-nothing.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from escrow_kernel.exceptions import LockTimeoutError, TransactionConflictError
from escrow_kernel.logging_config import get_logger

logger = get_logger("db.engine")

# PostgreSQL SQLSTATE codes
_LOCK_TIMEOUT_CODES = frozenset({"55P03", "57014"})  # lock_not_available, query_canceled
_CONFLICT_CODES = frozenset({"40001", "40P01"})  # serialization_failure, deadlock_detected


def translate_db_error(exc: Exception) -> Exception:
    """
    Map a driver/pool failure to a typed kernel error.

    Returns the original exception unchanged when it is not a known
    transient failure.
    """
    if isinstance(exc, PoolTimeoutError):
        return LockTimeoutError(f"connection pool exhausted: {exc}")
    if not isinstance(exc, DBAPIError):
        return exc

    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode in _LOCK_TIMEOUT_CODES:
        return LockTimeoutError(str(exc.orig))
    if pgcode in _CONFLICT_CODES:
        return TransactionConflictError(str(exc.orig))
    if "database is locked" in str(exc.orig).lower():
        return LockTimeoutError(str(exc.orig))
    return exc


def _install_sqlite_savepoint_support(engine: Engine) -> None:
    """
    Let SQLAlchemy own BEGIN on pysqlite so SAVEPOINTs behave.

    pysqlite's implicit transaction handling otherwise breaks
    begin_nested(); this is the recipe from the SQLAlchemy SQLite dialect
    documentation.  Also turns on foreign key enforcement.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class LedgerStore:
    """
    Durable relational store for wallets, escrow accounts, contracts and
    milestones.

    Contract:
        Constructed with a database URL and pool/timeout settings.  The
        composition root calls connect() once, hands the store (or sessions
        from it) to services, and calls dispose() at shutdown.

    Guarantees:
        - session_scope() yields a session whose work is committed on normal
          exit and rolled back on any exception.
        - Known transient DB failures surface as retryable ConcurrencyError
          subclasses with the original chained as __cause__.

    Usage:
        store = LedgerStore.from_config(get_active_config())
        store.connect()
        with store.session_scope() as session:
            EscrowEngine(session, WalletLedger(session, clock), clock).deposit(...)
        store.dispose()
    """

    def __init__(
        self,
        database_url: str,
        *,
        echo: bool = False,
        pool_size: int = 20,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        pool_recycle: int = 1800,
        lock_timeout_ms: int = 5000,
        statement_timeout_ms: int = 15000,
    ):
        self.database_url = database_url
        self.echo = echo
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool_timeout = pool_timeout
        self.pool_recycle = pool_recycle
        self.lock_timeout_ms = lock_timeout_ms
        self.statement_timeout_ms = statement_timeout_ms
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None

    @classmethod
    def from_config(cls, config) -> "LedgerStore":
        """Build a store from an ``escrow_config.EscrowConfig``."""
        db = config.database
        tx = config.transactions
        return cls(
            db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            pool_recycle=db.pool_recycle,
            lock_timeout_ms=tx.lock_timeout_ms,
            statement_timeout_ms=tx.statement_timeout_ms,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> Engine:
        """Create the engine and session factory (idempotent)."""
        if self._engine is not None:
            return self._engine

        if self.database_url.startswith("sqlite"):
            kwargs: dict = {
                "echo": self.echo,
                "connect_args": {"check_same_thread": False},
            }
            if ":memory:" in self.database_url or self.database_url.rstrip("/") == "sqlite:":
                kwargs["poolclass"] = StaticPool
            engine = create_engine(self.database_url, **kwargs)
            _install_sqlite_savepoint_support(engine)
        else:
            engine = create_engine(
                self.database_url,
                echo=self.echo,
                poolclass=QueuePool,
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                pool_pre_ping=True,
                pool_timeout=self.pool_timeout,
                pool_recycle=self.pool_recycle,
                isolation_level="READ COMMITTED",
            )

        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        logger.info(
            "engine_initialized",
            extra={
                "dialect": engine.dialect.name,
                "pool_size": self.pool_size,
                "lock_timeout_ms": self.lock_timeout_ms,
            },
        )
        return engine

    def dispose(self) -> None:
        """Release pooled connections and forget the engine."""
        if self._engine is not None:
            self._engine.dispose()
            logger.info("engine_disposed")
        self._engine = None
        self._session_factory = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("LedgerStore not connected. Call connect() first.")
        return self._engine

    @property
    def is_postgres(self) -> bool:
        return self._engine is not None and self._engine.dialect.name == "postgresql"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def session_factory(self) -> sessionmaker[Session]:
        """Session factory, for callers that manage their own sessions (threads)."""
        if self._session_factory is None:
            raise RuntimeError("LedgerStore not connected. Call connect() first.")
        return self._session_factory

    def session(self) -> Session:
        """A new, unscoped session.  The caller owns commit/rollback/close."""
        return self.session_factory()()

    def apply_timeouts(self, session: Session) -> None:
        """Bound lock and statement waits for the current transaction."""
        if not self.is_postgres:
            return
        session.execute(text(f"SET LOCAL lock_timeout = {int(self.lock_timeout_ms)}"))
        session.execute(
            text(f"SET LOCAL statement_timeout = {int(self.statement_timeout_ms)}")
        )

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        Postconditions: On normal exit, session is committed and closed.
            On exception, session is rolled back and closed.  Transient DB
            failures are re-raised as LockTimeoutError or
            TransactionConflictError; everything else is re-raised as is.
        """
        session = self.session()
        logger.debug("transaction_started")
        try:
            self.apply_timeouts(session)
            yield session
            session.commit()
            logger.debug("transaction_committed")
        except Exception as exc:
            session.rollback()
            translated = translate_db_error(exc)
            logger.warning(
                "transaction_rolled_back",
                exc_info=True,
                extra={"error_type": type(translated).__name__},
            )
            if translated is exc:
                raise
            raise translated from exc
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def create_tables(self) -> None:
        """Create all tables known to the kernel's models."""
        from escrow_kernel.db.base import Base
        import escrow_kernel.models  # noqa: F401  (populates Base.metadata)

        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop all tables. Use with caution - primarily for testing."""
        from escrow_kernel.db.base import Base
        import escrow_kernel.models  # noqa: F401

        Base.metadata.drop_all(self.engine)
