"""
SettlementService -- pays an approved milestone out of escrow.

Responsibility:
    One atomic unit that
      1. moves the milestone APPROVED -> PAID (MilestoneService.mark_paid),
      2. releases the milestone amount from escrow to the freelancer's
         pending balance (EscrowEngine.release),
      3. adds the amount to the contract's ``total_paid``
         (ContractService.record_payment).

    If any step fails (e.g. the escrow holds less than the milestone
    amount) none of the three changes remains.

Architecture position:
    Kernel > Services.  Coordinates the other services through their
    public APIs only; it writes no rows itself.

Idempotency:
    Without an explicit key the settlement uses
    ``settlement:pay_milestone:<milestone_id>``, so paying the same
    milestone twice is a replay, not a second release.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from escrow_kernel.domain.clock import Clock
from escrow_kernel.domain.dtos import SettlementReceipt
from escrow_kernel.exceptions import IdempotencyConflictError, InvalidStateTransitionError
from escrow_kernel.logging_config import LogContext, get_logger
from escrow_kernel.models.escrow import EscrowAccount, EscrowTransactionType
from escrow_kernel.services.base import BaseService
from escrow_kernel.services.contract_service import ContractService
from escrow_kernel.services.escrow_engine import EscrowEngine
from escrow_kernel.services.milestone_service import MilestoneService
from escrow_kernel.utils.ids import coerce_uuid
from escrow_kernel.utils.idempotency import generate_idempotency_key

logger = get_logger("services.settlement")


class SettlementService(BaseService[EscrowAccount]):
    """Milestone payment across milestone, escrow and contract."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        milestones: MilestoneService | None = None,
        escrow: EscrowEngine | None = None,
        contracts: ContractService | None = None,
    ):
        super().__init__(session, clock)
        self.milestones = milestones or MilestoneService(session, self.clock)
        self.escrow = escrow or EscrowEngine(session, clock=self.clock)
        self.contracts = contracts or ContractService(session, self.clock)

    def _replay(
        self, idempotency_key: str, client_id: UUID, milestone_id: UUID
    ) -> SettlementReceipt | None:
        tx = self.escrow.find_by_idempotency_key(idempotency_key)
        if tx is None:
            return None
        if tx.type != EscrowTransactionType.RELEASE or tx.milestone_id != milestone_id:
            raise IdempotencyConflictError(
                idempotency_key,
                expected=f"{tx.type} for milestone {tx.milestone_id}",
                received=f"RELEASE for milestone {milestone_id}",
            )
        milestone = self.milestones.get_milestone(milestone_id, client_id)
        contract = self.contracts.get_contract(milestone.contract_id)
        account = self.session.get(EscrowAccount, tx.escrow_account_id)
        logger.info("milestone_settlement_replayed", extra={"milestone_id": str(milestone_id)})
        return SettlementReceipt(
            milestone=milestone,
            escrow=EscrowEngine._receipt(account, tx, replayed=True),
            contract_total_paid=contract.total_paid,
            replayed=True,
        )

    def pay_milestone(
        self,
        client_id: UUID | str,
        milestone_id: UUID | str,
        idempotency_key: str | None = None,
    ) -> SettlementReceipt:
        """Pay an APPROVED milestone from the contract's escrow."""
        uid = coerce_uuid(client_id, "client_id")
        mid = coerce_uuid(milestone_id, "milestone_id")
        key = idempotency_key or generate_idempotency_key("settlement", "pay_milestone", mid)

        with LogContext.bind(actor_id=uid, milestone_id=mid, idempotency_key=key):
            try:
                with self.atomic():
                    replay = self._replay(key, uid, mid)
                    if replay is not None:
                        return replay

                    milestone = self.milestones.mark_paid(mid, uid)
                    release = self.escrow.release(
                        uid,
                        milestone.contract_id,
                        milestone.amount,
                        idempotency_key=key,
                        milestone_id=milestone.id,
                    )
                    contract = self.contracts.record_payment(
                        milestone.contract_id, milestone.amount
                    )
            except (IntegrityError, InvalidStateTransitionError):
                # A concurrent settlement of the same milestone may have won
                with self.atomic():
                    replay = self._replay(key, uid, mid)
                if replay is None:
                    raise
                return replay

            logger.info(
                "milestone_settled",
                extra={
                    "milestone_id": str(milestone.id),
                    "contract_id": str(milestone.contract_id),
                    "amount": milestone.amount,
                    "total_paid": contract.total_paid,
                },
            )
            return SettlementReceipt(
                milestone=milestone,
                escrow=release,
                contract_total_paid=contract.total_paid,
            )
