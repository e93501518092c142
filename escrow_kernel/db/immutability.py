"""
ORM-Level Immutability Enforcement for the money logs.

===============================================================================
WHY THIS EXISTS
===============================================================================

WalletTransaction and EscrowTransaction rows are the audit trail behind
every balance.  A balance that disagrees with its log is a defect; a log
that was edited after the fact is undetectable.  Corrections are made with
new rows (ADJUSTMENT, REFUND), never by rewriting old ones.

SQLAlchemy fires mapper events before UPDATE/DELETE statements are sent:

    session.flush()
         |
         v
    [before_update] --> _reject_update() --> ImmutabilityViolationError
    [before_delete] --> _reject_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only for inserts)

Bulk ``update()``/``delete()`` statements bypass mapper events; the kernel
never issues them against the log tables.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity             | When Immutable          | Why
-------------------|-------------------------|------------------------------
WalletTransaction  | ALWAYS (from creation)  | Pairs with a wallet balance change
EscrowTransaction  | ALWAYS (from creation)  | Drives escrow reconciliation

===============================================================================
USAGE
===============================================================================

Called by the composition root (and by the test fixtures) once models are
imported:

    from escrow_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from escrow_kernel.exceptions import ImmutabilityViolationError
from escrow_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _reject(operation: str, target) -> None:
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} rows are append-only and cannot be "
        f"{'modified' if operation == 'UPDATE' else 'deleted'}",
    )


def _reject_update(mapper, connection, target):
    """Block any UPDATE of a log row."""
    _reject("UPDATE", target)


def _reject_delete(mapper, connection, target):
    """Block any DELETE of a log row."""
    _reject("DELETE", target)


def _protected_models():
    from escrow_kernel.models.escrow import EscrowTransaction
    from escrow_kernel.models.wallet import WalletTransaction

    return (WalletTransaction, EscrowTransaction)


def register_immutability_listeners():
    """
    Register append-only enforcement on the log models.

    Safe to call more than once.
    """
    for model in _protected_models():
        if not event.contains(model, "before_update", _reject_update):
            event.listen(model, "before_update", _reject_update)
        if not event.contains(model, "before_delete", _reject_delete):
            event.listen(model, "before_delete", _reject_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove append-only enforcement.

    WARNING: Only use this in tests that must violate the rule on purpose.
    """
    for model in _protected_models():
        _safe_remove_listener(model, "before_update", _reject_update)
        _safe_remove_listener(model, "before_delete", _reject_delete)
