"""
MilestoneService -- the Milestone status state machine.

Responsibility:
    Creates, edits and moves milestones along ``MILESTONE_WORKFLOW``, and
    runs the two-party deletion handshake (client requests, freelancer
    accepts).

Architecture position:
    Kernel > Services.  The only writer of Milestone rows.  Uses
    AccessPolicy for party checks and SequenceService for sequence numbers.
    SettlementService calls ``mark_paid``.

Invariants enforced:
    - Every mutation first resolves its context in this order:
      milestone exists, parent contract exists, contract is ACTIVE or
      PENDING, caller holds the required role.
    - An illegal transition is rejected before any mutation unless the
      caller passes ``allow_unchecked=True`` for that one call.
    - Sequences come from a locked per-contract counter and are never
      reused, so (contract_id, sequence) stays unique across deletions.
    - Lock order is milestone, then contract.

Failure modes:
    - MilestoneNotFoundError, ContractNotFoundError,
      ContractNotActionableError, UnauthorizedError,
      InvalidStateTransitionError, MilestoneNotEditableError,
      NoDeletionRequestError, ValidationError.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from escrow_kernel.domain.clock import Clock
from escrow_kernel.domain.dtos import MilestoneDeleted, MilestoneInfo
from escrow_kernel.domain.lifecycles import (
    MILESTONE_ACTIONABLE_CONTRACT_STATES,
    MILESTONE_WORKFLOW,
)
from escrow_kernel.domain.money import require_positive_amount
from escrow_kernel.exceptions import (
    ContractNotActionableError,
    ContractNotFoundError,
    InvalidStateTransitionError,
    MilestoneNotEditableError,
    MilestoneNotFoundError,
    NoDeletionRequestError,
    ValidationError,
)
from escrow_kernel.logging_config import LogContext, get_logger
from escrow_kernel.models.contract import Contract
from escrow_kernel.models.milestone import Milestone, MilestoneStatus
from escrow_kernel.services.access_policy import AccessPolicy, ContractParties, ContractRole
from escrow_kernel.services.base import BaseService
from escrow_kernel.services.sequence_service import SequenceService, milestone_sequence_name
from escrow_kernel.utils.ids import coerce_uuid

logger = get_logger("services.milestone")

_UNSET = object()


def _parties(contract: Contract) -> ContractParties:
    return ContractParties(
        contract_id=contract.id,
        client_id=contract.client_id,
        freelancer_id=contract.freelancer_id,
    )


class MilestoneService(BaseService[Milestone]):
    """Milestone lifecycle operations."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        access_policy: AccessPolicy | None = None,
        sequences: SequenceService | None = None,
    ):
        super().__init__(session, clock)
        self.access = access_policy or AccessPolicy()
        self.sequences = sequences or SequenceService(session)

    # ------------------------------------------------------------------
    # Context resolution
    # ------------------------------------------------------------------

    def _lock_contract(self, contract_id: UUID) -> Contract:
        contract = self._locked(select(Contract).where(Contract.id == contract_id))
        if contract is None:
            raise ContractNotFoundError(str(contract_id))
        return contract

    def _actionable_contract(
        self, contract_id: UUID, user_id: UUID, role: ContractRole
    ) -> Contract:
        contract = self._lock_contract(contract_id)
        if contract.status not in MILESTONE_ACTIONABLE_CONTRACT_STATES:
            raise ContractNotActionableError(str(contract.id), contract.status)
        self.access.require(role, _parties(contract), user_id)
        return contract

    def _resolve(
        self, milestone_id: UUID | str, user_id: UUID | str, role: ContractRole
    ) -> tuple[Milestone, Contract]:
        """Locked milestone and contract after all context checks pass."""
        mid = coerce_uuid(milestone_id, "milestone_id")
        uid = coerce_uuid(user_id, "user_id")
        milestone = self._locked(select(Milestone).where(Milestone.id == mid))
        if milestone is None:
            raise MilestoneNotFoundError(str(mid))
        contract = self._actionable_contract(milestone.contract_id, uid, role)
        return milestone, contract

    def _validate_due_date(self, due_date: datetime | None) -> datetime | None:
        if due_date is None:
            return None
        if due_date.tzinfo is None:
            due_date = due_date.replace(tzinfo=timezone.utc)
        if due_date <= self.clock.now():
            raise ValidationError("due_date", "must be in the future")
        return due_date.astimezone(timezone.utc)

    @staticmethod
    def _validate_title(title: str | None) -> str:
        if title is None or not title.strip():
            raise ValidationError("title", "is required")
        return title.strip()

    # ------------------------------------------------------------------
    # Creation and edits
    # ------------------------------------------------------------------

    def create_milestone(
        self,
        contract_id: UUID | str,
        user_id: UUID | str,
        title: str,
        amount: int,
        due_date: datetime | None = None,
        description: str | None = None,
    ) -> MilestoneInfo:
        """Add a PENDING milestone to an ACTIVE or PENDING contract (client only)."""
        cid = coerce_uuid(contract_id, "contract_id")
        uid = coerce_uuid(user_id, "user_id")
        title = self._validate_title(title)
        amount = require_positive_amount(amount)
        due_date = self._validate_due_date(due_date)

        with self.atomic():
            contract = self._actionable_contract(cid, uid, ContractRole.CLIENT)
            sequence = self.sequences.next_value(milestone_sequence_name(contract.id))
            milestone = Milestone(
                contract_id=contract.id,
                sequence=sequence,
                title=title,
                description=description,
                amount=amount,
                currency=contract.currency,
                status=MilestoneStatus.PENDING.value,
                due_date=due_date,
            )
            self.session.add(milestone)
            self.session.flush()

        with LogContext.bind(actor_id=uid, contract_id=cid):
            logger.info(
                "milestone_created",
                extra={
                    "milestone_id": str(milestone.id),
                    "sequence": sequence,
                    "amount": amount,
                },
            )
        return MilestoneInfo.from_model(milestone)

    def update_milestone(
        self,
        milestone_id: UUID | str,
        user_id: UUID | str,
        *,
        title=_UNSET,
        description=_UNSET,
        amount=_UNSET,
        due_date=_UNSET,
    ) -> MilestoneInfo:
        """Edit a PENDING milestone (client only).  Omitted fields are kept."""
        changes: dict[str, object] = {}
        if title is not _UNSET:
            changes["title"] = self._validate_title(title)
        if description is not _UNSET:
            changes["description"] = description
        if amount is not _UNSET:
            changes["amount"] = require_positive_amount(amount)
        if due_date is not _UNSET:
            changes["due_date"] = self._validate_due_date(due_date)

        with self.atomic():
            milestone, _ = self._resolve(milestone_id, user_id, ContractRole.CLIENT)
            if milestone.status != MilestoneStatus.PENDING:
                raise MilestoneNotEditableError(str(milestone.id), milestone.status)
            for field, value in changes.items():
                setattr(milestone, field, value)
            self.session.flush()

        logger.info(
            "milestone_updated",
            extra={"milestone_id": str(milestone.id), "fields": sorted(changes)},
        )
        return MilestoneInfo.from_model(milestone)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        milestone_id: UUID | str,
        user_id: UUID | str,
        role: ContractRole,
        to_status: MilestoneStatus,
        stamp: str | None = None,
        allow_unchecked: bool = False,
    ) -> MilestoneInfo:
        with self.atomic():
            milestone, contract = self._resolve(milestone_id, user_id, role)
            from_status = milestone.status
            allowed = MILESTONE_WORKFLOW.is_allowed(from_status, to_status.value)
            if not allowed and not allow_unchecked:
                logger.warning(
                    "milestone_transition_rejected",
                    extra={
                        "milestone_id": str(milestone.id),
                        "from_status": from_status,
                        "to_status": to_status.value,
                    },
                )
                raise InvalidStateTransitionError(
                    "Milestone", str(milestone.id), from_status, to_status.value
                )

            milestone.status = to_status.value
            if stamp is not None:
                setattr(milestone, stamp, self.clock.now())
            self.session.flush()

        with LogContext.bind(actor_id=user_id, contract_id=contract.id, milestone_id=milestone.id):
            logger.info(
                "milestone_transitioned",
                extra={
                    "from_status": from_status,
                    "to_status": to_status.value,
                    "unchecked": not allowed,
                },
            )
        return MilestoneInfo.from_model(milestone)

    def start_milestone(self, milestone_id, user_id, *, allow_unchecked: bool = False) -> MilestoneInfo:
        """Freelancer begins (or resumes after rejection) work -> IN_PROGRESS."""
        return self._transition(
            milestone_id, user_id, ContractRole.FREELANCER,
            MilestoneStatus.IN_PROGRESS, allow_unchecked=allow_unchecked,
        )

    def submit_milestone(self, milestone_id, user_id, *, allow_unchecked: bool = False) -> MilestoneInfo:
        """Freelancer submits work -> SUBMITTED; sets submitted_at."""
        return self._transition(
            milestone_id, user_id, ContractRole.FREELANCER,
            MilestoneStatus.SUBMITTED, "submitted_at", allow_unchecked,
        )

    def approve_by_freelancer(self, milestone_id, user_id, *, allow_unchecked: bool = False) -> MilestoneInfo:
        """-> APPROVED; sets approved_at."""
        return self._transition(
            milestone_id, user_id, ContractRole.FREELANCER,
            MilestoneStatus.APPROVED, "approved_at", allow_unchecked,
        )

    def reject_milestone(self, milestone_id, user_id, *, allow_unchecked: bool = False) -> MilestoneInfo:
        """-> REJECTED."""
        return self._transition(
            milestone_id, user_id, ContractRole.FREELANCER,
            MilestoneStatus.REJECTED, allow_unchecked=allow_unchecked,
        )

    def dispute_milestone(self, milestone_id, user_id, *, allow_unchecked: bool = False) -> MilestoneInfo:
        """Client disputes -> DISPUTED; sets disputed_at."""
        return self._transition(
            milestone_id, user_id, ContractRole.CLIENT,
            MilestoneStatus.DISPUTED, "disputed_at", allow_unchecked,
        )

    def approve_by_client(self, milestone_id, user_id, *, allow_unchecked: bool = False) -> MilestoneInfo:
        """Client signs off a paid milestone -> COMPLETED; sets approved_at."""
        return self._transition(
            milestone_id, user_id, ContractRole.CLIENT,
            MilestoneStatus.COMPLETED, "approved_at", allow_unchecked,
        )

    def cancel_milestone(self, milestone_id, user_id, *, allow_unchecked: bool = False) -> MilestoneInfo:
        """Client cancels -> CANCELED."""
        return self._transition(
            milestone_id, user_id, ContractRole.CLIENT,
            MilestoneStatus.CANCELED, allow_unchecked=allow_unchecked,
        )

    def mark_paid(self, milestone_id, user_id, *, allow_unchecked: bool = False) -> MilestoneInfo:
        """APPROVED -> PAID; sets paid_at.  Used by SettlementService."""
        return self._transition(
            milestone_id, user_id, ContractRole.CLIENT,
            MilestoneStatus.PAID, "paid_at", allow_unchecked,
        )

    # ------------------------------------------------------------------
    # Deletion handshake
    # ------------------------------------------------------------------

    def request_deletion(self, milestone_id: UUID | str, user_id: UUID | str) -> MilestoneInfo:
        """Client asks for the milestone to be removed; stamps the request."""
        with self.atomic():
            milestone, _ = self._resolve(milestone_id, user_id, ContractRole.CLIENT)
            milestone.deletion_requested_at = self.clock.now()
            self.session.flush()

        logger.info("milestone_deletion_requested", extra={"milestone_id": str(milestone.id)})
        return MilestoneInfo.from_model(milestone)

    def accept_deletion(self, milestone_id: UUID | str, user_id: UUID | str) -> MilestoneDeleted:
        """Freelancer accepts a pending deletion request; the row is removed."""
        with self.atomic():
            milestone, _ = self._resolve(milestone_id, user_id, ContractRole.FREELANCER)
            if milestone.deletion_requested_at is None:
                raise NoDeletionRequestError(str(milestone.id))
            deleted = MilestoneDeleted(
                milestone_id=milestone.id,
                contract_id=milestone.contract_id,
                sequence=milestone.sequence,
            )
            self.session.delete(milestone)
            self.session.flush()

        logger.info(
            "milestone_deleted",
            extra={"milestone_id": str(deleted.milestone_id), "sequence": deleted.sequence},
        )
        return deleted

    # ------------------------------------------------------------------
    # Reads (either party; no actionable-contract requirement)
    # ------------------------------------------------------------------

    def get_milestone(self, milestone_id: UUID | str, user_id: UUID | str) -> MilestoneInfo:
        mid = coerce_uuid(milestone_id, "milestone_id")
        uid = coerce_uuid(user_id, "user_id")
        milestone = self.session.get(Milestone, mid)
        if milestone is None:
            raise MilestoneNotFoundError(str(mid))
        contract = self.session.get(Contract, milestone.contract_id)
        if contract is None:
            raise ContractNotFoundError(str(milestone.contract_id))
        self.access.require(ContractRole.PARTY, _parties(contract), uid)
        return MilestoneInfo.from_model(milestone)

    def list_milestones(self, contract_id: UUID | str, user_id: UUID | str) -> list[MilestoneInfo]:
        """All milestones of the contract, ordered by sequence."""
        cid = coerce_uuid(contract_id, "contract_id")
        uid = coerce_uuid(user_id, "user_id")
        contract = self.session.get(Contract, cid)
        if contract is None:
            raise ContractNotFoundError(str(cid))
        self.access.require(ContractRole.PARTY, _parties(contract), uid)
        rows = self.session.execute(
            select(Milestone)
            .where(Milestone.contract_id == cid)
            .order_by(Milestone.sequence)
        ).scalars().all()
        return [MilestoneInfo.from_model(m) for m in rows]
