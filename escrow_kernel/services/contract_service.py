"""
ContractService -- the Contract status state machine.

Responsibility:
    Creates contracts and moves them along ``CONTRACT_WORKFLOW``:

        PENDING        -> ACTIVE, TERMINATED
        ACTIVE         -> REVIEW_PENDING, TERMINATED
        REVIEW_PENDING -> COMPLETED, DISPUTED, TERMINATED
        DISPUTED       -> TERMINATED
        COMPLETED, TERMINATED are terminal

    Each transition stamps its timestamp (start -> start_date,
    submit_work -> submitted_at, complete/terminate -> end_date) and leaves
    every other field untouched.

Architecture position:
    Kernel > Services.  The only writer of Contract rows.  SettlementService
    calls ``record_payment`` after a milestone release.

Invariants enforced:
    - An illegal transition is rejected before any mutation.
    - Serialisation is by ``SELECT ... FOR UPDATE`` on the contract row,
      never by in-process locks.

Failure modes:
    - ContractNotFoundError, InvalidStateTransitionError, UserNotFoundError,
      ValidationError.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select

from escrow_kernel.domain.dtos import ContractInfo
from escrow_kernel.domain.lifecycles import CONTRACT_WORKFLOW
from escrow_kernel.domain.money import require_non_negative_amount, require_positive_amount
from escrow_kernel.exceptions import (
    ContractNotFoundError,
    InvalidStateTransitionError,
    UserNotFoundError,
    ValidationError,
)
from escrow_kernel.logging_config import LogContext, get_logger
from escrow_kernel.models.contract import Contract, ContractStatus
from escrow_kernel.models.user import User
from escrow_kernel.services.base import BaseService
from escrow_kernel.utils.ids import coerce_uuid

logger = get_logger("services.contract")


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ContractService(BaseService[Contract]):
    """Contract lifecycle operations."""

    def lock(self, contract_id: UUID | str) -> Contract:
        """Locked Contract row.  Raises ContractNotFoundError."""
        cid = coerce_uuid(contract_id, "contract_id")
        contract = self._locked(select(Contract).where(Contract.id == cid))
        if contract is None:
            raise ContractNotFoundError(str(cid))
        return contract

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    def create_contract(
        self,
        client_id: UUID | str,
        freelancer_id: UUID | str,
        job_id: str,
        amount: int,
        currency: str = "USD",
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> ContractInfo:
        client = coerce_uuid(client_id, "client_id")
        freelancer = coerce_uuid(freelancer_id, "freelancer_id")
        if client == freelancer:
            raise ValidationError("freelancer_id", "client and freelancer must differ")
        if not job_id:
            raise ValidationError("job_id", "is required")
        amount = require_non_negative_amount(amount)
        if not currency or len(currency) != 3 or not currency.isalpha():
            raise ValidationError("currency", f"must be a 3-letter code, got {currency!r}")
        start_date = _as_utc(start_date)
        end_date = _as_utc(end_date)
        if start_date and end_date and end_date < start_date:
            raise ValidationError("end_date", "must not precede start_date")

        with self.atomic():
            for uid in (client, freelancer):
                if self.session.get(User, uid) is None:
                    raise UserNotFoundError(str(uid))
            contract = Contract(
                client_id=client,
                freelancer_id=freelancer,
                job_id=str(job_id),
                status=ContractStatus.PENDING.value,
                amount=amount,
                currency=currency.upper(),
                total_paid=0,
                start_date=start_date,
                end_date=end_date,
            )
            self.session.add(contract)
            self.session.flush()

        logger.info(
            "contract_created",
            extra={
                "contract_id": str(contract.id),
                "client_id": str(client),
                "freelancer_id": str(freelancer),
                "amount": amount,
            },
        )
        return ContractInfo.from_model(contract)

    def get_contract(self, contract_id: UUID | str) -> ContractInfo:
        contract = self.find_contract(contract_id)
        if contract is None:
            raise ContractNotFoundError(str(contract_id))
        return contract

    def find_contract(self, contract_id: UUID | str) -> ContractInfo | None:
        contract = self.session.get(Contract, coerce_uuid(contract_id, "contract_id"))
        return ContractInfo.from_model(contract) if contract is not None else None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        contract_id: UUID | str,
        to_status: ContractStatus,
        stamp: str | None = None,
    ) -> ContractInfo:
        with self.atomic():
            contract = self.lock(contract_id)
            from_status = contract.status
            if not CONTRACT_WORKFLOW.is_allowed(from_status, to_status.value):
                logger.warning(
                    "contract_transition_rejected",
                    extra={
                        "contract_id": str(contract.id),
                        "from_status": from_status,
                        "to_status": to_status.value,
                    },
                )
                raise InvalidStateTransitionError(
                    "Contract", str(contract.id), from_status, to_status.value
                )

            contract.status = to_status.value
            if stamp is not None:
                setattr(contract, stamp, self.clock.now())
            self.session.flush()

        with LogContext.bind(contract_id=contract.id):
            logger.info(
                "contract_transitioned",
                extra={"from_status": from_status, "to_status": to_status.value},
            )
        return ContractInfo.from_model(contract)

    def start(self, contract_id: UUID | str) -> ContractInfo:
        """PENDING -> ACTIVE; sets start_date."""
        return self._transition(contract_id, ContractStatus.ACTIVE, "start_date")

    def submit_work(self, contract_id: UUID | str) -> ContractInfo:
        """ACTIVE -> REVIEW_PENDING; sets submitted_at."""
        return self._transition(contract_id, ContractStatus.REVIEW_PENDING, "submitted_at")

    def complete(self, contract_id: UUID | str) -> ContractInfo:
        """REVIEW_PENDING -> COMPLETED; sets end_date."""
        return self._transition(contract_id, ContractStatus.COMPLETED, "end_date")

    def dispute(self, contract_id: UUID | str) -> ContractInfo:
        """REVIEW_PENDING -> DISPUTED."""
        return self._transition(contract_id, ContractStatus.DISPUTED)

    def terminate(self, contract_id: UUID | str) -> ContractInfo:
        """Any non-terminal state -> TERMINATED; sets end_date."""
        return self._transition(contract_id, ContractStatus.TERMINATED, "end_date")

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def record_payment(self, contract_id: UUID | str, amount: int) -> ContractInfo:
        """Add a settled milestone amount to ``total_paid``."""
        amount = require_positive_amount(amount)
        with self.atomic():
            contract = self.lock(contract_id)
            contract.total_paid += amount
            self.session.flush()

        logger.info(
            "contract_payment_recorded",
            extra={
                "contract_id": str(contract.id),
                "amount": amount,
                "total_paid": contract.total_paid,
            },
        )
        return ContractInfo.from_model(contract)
