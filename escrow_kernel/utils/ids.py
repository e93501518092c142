"""Identifier coercion at the service boundary."""

from uuid import UUID

from escrow_kernel.exceptions import ValidationError


def coerce_uuid(value: UUID | str | None, field: str) -> UUID:
    """
    Accept a UUID or its string form.

    Raises:
        ValidationError: value is missing or not a UUID.
    """
    if isinstance(value, UUID):
        return value
    if value is None or value == "":
        raise ValidationError(field, "is required")
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(field, f"not a valid id: {value!r}") from None
