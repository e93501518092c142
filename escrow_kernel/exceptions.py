"""
Typed Exception Hierarchy for the Escrow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Money-moving code must fail precisely. Callers (the HTTP layer, job
runners, tests) decide what to do with an error by its TYPE and its
machine-readable CODE, never by parsing the message:

    try:
        escrow.deposit(client_id, contract_id, amount)
    except InsufficientFundsError as e:
        api_response(code=e.code, required=e.required, available=e.available)
    except ConcurrencyError as e:
        if e.retryable:
            schedule_retry()

Every exception:
  1. Has a ``code`` class attribute (stable, API-safe).
  2. Has an ``http_status`` class attribute (a hint for the HTTP layer; the
     kernel itself never speaks HTTP).
  3. Carries structured attributes (ids, amounts, states).
  4. Declares whether it is ``retryable``. Only infrastructure failures
     (lock timeouts, serialization conflicts) are. Domain errors are
     deterministic for a given state and must not be retried.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    EscrowKernelError (base)
    |
    +-- NotFoundError
    |   +-- ContractNotFoundError
    |   +-- MilestoneNotFoundError
    |   +-- WalletNotFoundError
    |   +-- EscrowNotInitializedError
    |   +-- UserNotFoundError
    |
    +-- UnauthorizedError
    |
    +-- StateError
    |   +-- InvalidStateTransitionError
    |   +-- ContractNotActionableError
    |   +-- MilestoneNotEditableError
    |   +-- NoDeletionRequestError
    |   +-- EscrowAccountClosedError
    |   +-- EscrowNotClosableError
    |
    +-- LedgerError
    |   +-- InsufficientFundsError
    |   +-- WalletInactiveError
    |   +-- IdempotencyConflictError
    |
    +-- ValidationError
    |
    +-- ConcurrencyError
    |   +-- LockTimeoutError
    |   +-- TransactionConflictError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | HTTP | Retryable
-------------|-------------------------------|------|----------
NotFound     | CONTRACT_NOT_FOUND            | 404  | no
             | MILESTONE_NOT_FOUND           | 404  | no
             | WALLET_NOT_FOUND              | 404  | no
             | ESCROW_NOT_INITIALIZED        | 404  | no
             | USER_NOT_FOUND                | 404  | no
Auth         | UNAUTHORIZED                  | 403  | no
State        | INVALID_STATE_TRANSITION      | 409  | no
             | CONTRACT_NOT_ACTIONABLE       | 409  | no
             | MILESTONE_NOT_EDITABLE        | 409  | no
             | NO_DELETION_REQUEST           | 409  | no
             | ESCROW_ACCOUNT_CLOSED         | 409  | no
             | ESCROW_NOT_CLOSABLE           | 409  | no
Ledger       | INSUFFICIENT_FUNDS            | 422  | no
             | WALLET_INACTIVE               | 422  | no
             | IDEMPOTENCY_CONFLICT          | 409  | no
Validation   | VALIDATION_ERROR              | 400  | no
Concurrency  | LOCK_TIMEOUT                  | 503  | yes
             | TRANSACTION_CONFLICT          | 409  | yes
Immutability | IMMUTABILITY_VIOLATION        | 500  | no
"""


class EscrowKernelError(Exception):
    """
    Base exception for all escrow kernel errors.

    All subclasses must set a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "ESCROW_KERNEL_ERROR"
    http_status: int = 500
    retryable: bool = False


# Not-found exceptions


class NotFoundError(EscrowKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"
    http_status: int = 404

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class ContractNotFoundError(NotFoundError):
    """Contract with given ID was not found."""

    code: str = "CONTRACT_NOT_FOUND"

    def __init__(self, contract_id: str):
        self.contract_id = contract_id
        super().__init__("Contract", contract_id)


class MilestoneNotFoundError(NotFoundError):
    """Milestone with given ID was not found."""

    code: str = "MILESTONE_NOT_FOUND"

    def __init__(self, milestone_id: str):
        self.milestone_id = milestone_id
        super().__init__("Milestone", milestone_id)


class WalletNotFoundError(NotFoundError):
    """No wallet exists for the user."""

    code: str = "WALLET_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("Wallet", user_id)


class EscrowNotInitializedError(NotFoundError):
    """The contract exists but has no escrow account yet."""

    code: str = "ESCROW_NOT_INITIALIZED"

    def __init__(self, contract_id: str):
        self.contract_id = contract_id
        super().__init__("EscrowAccount", contract_id)


class UserNotFoundError(NotFoundError):
    """User with given ID was not found."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("User", user_id)


# Authorization


class UnauthorizedError(EscrowKernelError):
    """Caller is not the party required for this action."""

    code: str = "UNAUTHORIZED"
    http_status: int = 403

    def __init__(self, user_id: str, contract_id: str, required_role: str):
        self.user_id = user_id
        self.contract_id = contract_id
        self.required_role = required_role
        super().__init__(
            f"User {user_id} is not authorized as {required_role} "
            f"on contract {contract_id}"
        )


# State machine exceptions


class StateError(EscrowKernelError):
    """Base exception for lifecycle errors."""

    code: str = "STATE_ERROR"
    http_status: int = 409


class InvalidStateTransitionError(StateError):
    """Requested status change is not in the transition table."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        from_status: str,
        to_status: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid {entity_type.lower()} status transition "
            f"from {from_status} to {to_status} ({entity_id})"
        )


class ContractNotActionableError(StateError):
    """Parent contract is not ACTIVE or PENDING."""

    code: str = "CONTRACT_NOT_ACTIONABLE"

    def __init__(self, contract_id: str, status: str):
        self.contract_id = contract_id
        self.status = status
        super().__init__(
            f"Contract {contract_id} is {status}; milestones can only be "
            "changed while the contract is ACTIVE or PENDING"
        )


class MilestoneNotEditableError(StateError):
    """Only PENDING milestones can be edited."""

    code: str = "MILESTONE_NOT_EDITABLE"

    def __init__(self, milestone_id: str, status: str):
        self.milestone_id = milestone_id
        self.status = status
        super().__init__(
            f"Milestone {milestone_id} is {status}; only PENDING milestones "
            "can be updated"
        )


class NoDeletionRequestError(StateError):
    """Deletion accepted but never requested."""

    code: str = "NO_DELETION_REQUEST"

    def __init__(self, milestone_id: str):
        self.milestone_id = milestone_id
        super().__init__(f"No deletion request found for milestone {milestone_id}")


class EscrowAccountClosedError(StateError):
    """Deposit or release against a COMPLETED or CANCELED escrow account."""

    code: str = "ESCROW_ACCOUNT_CLOSED"

    def __init__(self, contract_id: str, status: str):
        self.contract_id = contract_id
        self.status = status
        super().__init__(f"Escrow account of contract {contract_id} is {status}")


class EscrowNotClosableError(StateError):
    """Escrow account cannot be closed yet."""

    code: str = "ESCROW_NOT_CLOSABLE"

    def __init__(self, contract_id: str, reason: str):
        self.contract_id = contract_id
        self.reason = reason
        super().__init__(f"Escrow account of contract {contract_id} cannot be closed: {reason}")


# Ledger exceptions


class LedgerError(EscrowKernelError):
    """Base exception for balance and ledger errors."""

    code: str = "LEDGER_ERROR"
    http_status: int = 422


class InsufficientFundsError(LedgerError):
    """A balance or held-amount check failed before mutation."""

    code: str = "INSUFFICIENT_FUNDS"

    def __init__(self, account: str, account_id: str, required: int, available: int):
        self.account = account
        self.account_id = account_id
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient {account} on {account_id}: "
            f"required={required}, available={available}"
        )


class WalletInactiveError(LedgerError):
    """Wallet owner is not an ACTIVE freelancer."""

    code: str = "WALLET_INACTIVE"

    def __init__(self, user_id: str, reason: str):
        self.user_id = user_id
        self.reason = reason
        super().__init__(f"Wallet of user {user_id} cannot be credited: {reason}")


class IdempotencyConflictError(LedgerError):
    """
    Idempotency key reused for a different operation.

    Same key + same operation + same amount is a replay (success);
    anything else with the same key is a protocol violation.
    """

    code: str = "IDEMPOTENCY_CONFLICT"
    http_status: int = 409

    def __init__(self, idempotency_key: str, expected: str, received: str):
        self.idempotency_key = idempotency_key
        self.expected = expected
        self.received = received
        super().__init__(
            f"Idempotency key {idempotency_key} already used for {expected}, "
            f"received {received}"
        )


# Validation


class ValidationError(EscrowKernelError):
    """Malformed input (non-positive amount, missing identifiers)."""

    code: str = "VALIDATION_ERROR"
    http_status: int = 400

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Concurrency exceptions


class ConcurrencyError(EscrowKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    http_status: int = 503
    retryable: bool = True


class LockTimeoutError(ConcurrencyError):
    """Row lock or statement exceeded its wait window."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Lock wait exceeded, transaction aborted: {detail}")


class TransactionConflictError(ConcurrencyError):
    """Deadlock or serialization failure; the transaction was rolled back."""

    code: str = "TRANSACTION_CONFLICT"
    http_status: int = 409

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Concurrent modification, transaction aborted: {detail}")


# Immutability exceptions


class ImmutabilityError(EscrowKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    WalletTransaction and EscrowTransaction rows are append-only.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
