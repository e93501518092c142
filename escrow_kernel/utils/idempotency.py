"""
Idempotency key helpers.

Callers normally supply their own keys (e.g. a request id).  When an
operation has a natural identity, such as paying a given milestone, the
kernel derives one so that retries of the same business action collapse
into a single ledger movement.
"""

from uuid import UUID


def generate_idempotency_key(
    scope: str,
    operation: str,
    reference: UUID | str,
) -> str:
    """
    Generate an idempotency key for a business action.

    Format: scope:operation:reference

    Example:
        >>> generate_idempotency_key("settlement", "pay_milestone", milestone_id)
        "settlement:pay_milestone:550e8400-e29b-41d4-a716-446655440000"
    """
    return f"{scope}:{operation}:{reference}"
