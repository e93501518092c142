"""Tests for idempotency key and identifier helpers."""

from uuid import uuid4

import pytest

from escrow_kernel.exceptions import ValidationError
from escrow_kernel.utils.idempotency import generate_idempotency_key
from escrow_kernel.utils.ids import coerce_uuid


class TestIdempotencyKeys:

    def test_format(self):
        milestone_id = uuid4()
        key = generate_idempotency_key("settlement", "pay_milestone", milestone_id)

        assert key == f"settlement:pay_milestone:{milestone_id}"

    def test_accepts_plain_references(self):
        assert generate_idempotency_key("escrow", "deposit", "req-42") == "escrow:deposit:req-42"


class TestCoerceUuid:

    def test_accepts_uuid_and_string(self):
        value = uuid4()
        assert coerce_uuid(value, "contract_id") is value
        assert coerce_uuid(str(value), "contract_id") == value

    @pytest.mark.parametrize("value", [None, "", "not-a-uuid"])
    def test_rejects(self, value):
        with pytest.raises(ValidationError) as exc_info:
            coerce_uuid(value, "milestone_id")
        assert exc_info.value.field == "milestone_id"
