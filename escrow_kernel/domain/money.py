"""
Money conversion at the kernel boundary (``escrow_kernel.domain.money``).

Responsibility
--------------
Amounts are stored and computed as integers in minor currency units.  The
boundary converts major units (as sent by clients, e.g. ``"150.25"``) to
minor units exactly once on the way in, and back to ``Decimal`` on the way
out.  Floats never take part in arithmetic.

Architecture position
---------------------
**Kernel domain layer** -- pure functions, zero I/O.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from escrow_kernel.exceptions import ValidationError

MINOR_UNIT_SCALE = 100


def to_minor_units(
    amount: Decimal | int | str | float,
    scale: int = MINOR_UNIT_SCALE,
) -> int:
    """
    Convert a major-unit amount to integer minor units.

    Rounds half-up to the nearest minor unit: ``to_minor_units("10.005")``
    is ``1001``.

    Raises:
        ValidationError: amount is not a finite, non-negative number.
    """
    if isinstance(amount, bool):
        raise ValidationError("amount", f"not a number: {amount!r}")
    try:
        # str() keeps float inputs at their shortest repr (0.1 -> "0.1")
        value = Decimal(str(amount)) if isinstance(amount, float) else Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("amount", f"not a number: {amount!r}") from None

    if not value.is_finite():
        raise ValidationError("amount", f"must be finite, got {amount!r}")
    if value < 0:
        raise ValidationError("amount", f"must not be negative, got {amount!r}")

    return int((value * scale).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major_units(minor: int, scale: int = MINOR_UNIT_SCALE) -> Decimal:
    """Convert integer minor units to a two-place ``Decimal``."""
    return (Decimal(minor) / Decimal(scale)).quantize(Decimal("0.01"))


def require_positive_amount(amount: int, field: str = "amount") -> int:
    """Return ``amount`` if it is a positive integer, else raise ValidationError."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(field, f"must be an integer number of minor units, got {amount!r}")
    if amount <= 0:
        raise ValidationError(field, f"must be positive, got {amount}")
    return amount


def require_non_negative_amount(amount: int, field: str = "amount") -> int:
    """Return ``amount`` if it is a non-negative integer, else raise ValidationError."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(field, f"must be an integer number of minor units, got {amount!r}")
    if amount < 0:
        raise ValidationError(field, f"must not be negative, got {amount}")
    return amount
