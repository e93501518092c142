"""Small helpers shared by services."""

from escrow_kernel.utils.idempotency import generate_idempotency_key
from escrow_kernel.utils.ids import coerce_uuid

__all__ = [
    "generate_idempotency_key",
    "coerce_uuid",
]
