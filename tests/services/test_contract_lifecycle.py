"""
Tests for ContractService.

Covers:
- Contract creation and input validation
- Every legal transition and its timestamp
- Illegal transitions leave the contract untouched
- Every operation from every state against the transition table
- Payment accumulation
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from escrow_kernel.domain.lifecycles import CONTRACT_WORKFLOW
from escrow_kernel.exceptions import (
    ContractNotFoundError,
    InvalidStateTransitionError,
    UserNotFoundError,
    ValidationError,
)
from escrow_kernel.models.contract import Contract, ContractStatus


class TestCreateContract:

    def test_starts_pending(self, contract_service, client_user, freelancer_user):
        contract = contract_service.create_contract(
            client_user.id, freelancer_user.id, job_id="job-1", amount=50000, currency="eur"
        )

        assert contract.status == "PENDING"
        assert contract.client_id == client_user.id
        assert contract.freelancer_id == freelancer_user.id
        assert contract.currency == "EUR"
        assert contract.total_paid == 0
        assert contract_service.get_contract(contract.id) == contract

    def test_same_party_twice(self, contract_service, client_user):
        with pytest.raises(ValidationError) as exc_info:
            contract_service.create_contract(client_user.id, client_user.id, job_id="j", amount=1)
        assert exc_info.value.field == "freelancer_id"

    def test_unknown_party(self, contract_service, client_user):
        with pytest.raises(UserNotFoundError):
            contract_service.create_contract(client_user.id, uuid4(), job_id="j", amount=1)

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"job_id": "", "amount": 1}, "job_id"),
            ({"job_id": "j", "amount": -1}, "amount"),
            ({"job_id": "j", "amount": 1, "currency": "US"}, "currency"),
            ({"job_id": "j", "amount": 1, "currency": "U5D"}, "currency"),
        ],
    )
    def test_invalid_input(self, contract_service, client_user, freelancer_user, kwargs, field):
        with pytest.raises(ValidationError) as exc_info:
            contract_service.create_contract(client_user.id, freelancer_user.id, **kwargs)
        assert exc_info.value.field == field

    def test_end_before_start(self, contract_service, client_user, freelancer_user):
        start = datetime(2024, 3, 1, tzinfo=timezone.utc)
        with pytest.raises(ValidationError):
            contract_service.create_contract(
                client_user.id,
                freelancer_user.id,
                job_id="j",
                amount=1,
                start_date=start,
                end_date=start - timedelta(days=1),
            )

    def test_find_missing_contract(self, contract_service):
        assert contract_service.find_contract(uuid4()) is None
        with pytest.raises(ContractNotFoundError):
            contract_service.get_contract(uuid4())


class TestTransitions:

    def test_happy_path(self, contract_service, make_contract, deterministic_clock):
        contract = make_contract(start=False)

        started = contract_service.start(contract.id)
        assert started.status == "ACTIVE"
        assert started.start_date == deterministic_clock.now()

        deterministic_clock.advance(3600)
        submitted = contract_service.submit_work(contract.id)
        assert submitted.status == "REVIEW_PENDING"
        assert submitted.submitted_at == deterministic_clock.now()
        assert submitted.start_date == started.start_date

        deterministic_clock.advance(3600)
        completed = contract_service.complete(contract.id)
        assert completed.status == "COMPLETED"
        assert completed.end_date == deterministic_clock.now()
        assert completed.submitted_at == submitted.submitted_at

    def test_dispute_then_terminate(self, contract_service, contract):
        contract_service.submit_work(contract.id)

        disputed = contract_service.dispute(contract.id)
        assert disputed.status == "DISPUTED"

        terminated = contract_service.terminate(contract.id)
        assert terminated.status == "TERMINATED"
        assert terminated.end_date is not None

    @pytest.mark.parametrize("steps", [[], ["start"], ["start", "submit_work"]])
    def test_terminate_from_any_open_state(self, contract_service, make_contract, steps):
        contract = make_contract(start=False)
        for step in steps:
            getattr(contract_service, step)(contract.id)

        assert contract_service.terminate(contract.id).status == "TERMINATED"

    @pytest.mark.parametrize(
        "steps, action, from_status",
        [
            ([], "submit_work", "PENDING"),
            ([], "complete", "PENDING"),
            (["start"], "start", "ACTIVE"),
            (["start"], "dispute", "ACTIVE"),
            (["start", "submit_work", "complete"], "terminate", "COMPLETED"),
            (["terminate"], "start", "TERMINATED"),
            (["start", "submit_work", "dispute"], "complete", "DISPUTED"),
        ],
    )
    def test_illegal_transition(self, contract_service, make_contract, steps, action, from_status):
        contract = make_contract(start=False)
        for step in steps:
            getattr(contract_service, step)(contract.id)
        before = contract_service.get_contract(contract.id)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            getattr(contract_service, action)(contract.id)

        assert exc_info.value.from_status == from_status
        assert contract_service.get_contract(contract.id) == before

    def test_unknown_contract(self, contract_service):
        with pytest.raises(ContractNotFoundError):
            contract_service.start(uuid4())

    def test_rejection_is_logged(self, captured_logs, contract_service, make_contract):
        contract = make_contract(start=False)
        with pytest.raises(InvalidStateTransitionError):
            contract_service.complete(contract.id)

        rejected = [r for r in captured_logs() if r["message"] == "contract_transition_rejected"]
        assert rejected[0]["from_status"] == "PENDING"
        assert rejected[0]["to_status"] == "COMPLETED"


_OPERATIONS = [
    ("start", "ACTIVE"),
    ("submit_work", "REVIEW_PENDING"),
    ("complete", "COMPLETED"),
    ("dispute", "DISPUTED"),
    ("terminate", "TERMINATED"),
]


class TestTransitionMatrix:
    """Each operation from each state succeeds exactly when the table allows it."""

    @pytest.mark.parametrize("action, target", _OPERATIONS)
    @pytest.mark.parametrize("state", [s.value for s in ContractStatus])
    def test_operation_from_state(self, session, contract_service, make_contract, state, action, target):
        contract = make_contract(start=False)
        row = session.get(Contract, contract.id)
        row.status = state
        session.flush()
        operation = getattr(contract_service, action)

        if CONTRACT_WORKFLOW.is_allowed(state, target):
            assert operation(contract.id).status == target
        else:
            with pytest.raises(InvalidStateTransitionError) as exc_info:
                operation(contract.id)
            assert exc_info.value.from_status == state
            assert exc_info.value.to_status == target
            assert contract_service.get_contract(contract.id).status == state

    def test_matrix_covers_every_target(self):
        assert {target for _, target in _OPERATIONS} == set(CONTRACT_WORKFLOW.states) - {"PENDING"}


class TestRecordPayment:

    def test_accumulates(self, contract_service, contract):
        contract_service.record_payment(contract.id, 1500)
        info = contract_service.record_payment(contract.id, 2500)

        assert info.total_paid == 4000

    def test_rejects_zero(self, contract_service, contract):
        with pytest.raises(ValidationError):
            contract_service.record_payment(contract.id, 0)
