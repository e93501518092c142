"""
AccessPolicy -- who may act on a contract.

Responsibility:
    Answers "is this user the client / the freelancer / a party of this
    contract?" through a capability table keyed by ``ContractRole``.

Architecture position:
    Kernel > Services.  Pure: operates on the contract's party ids only and
    performs no I/O, so both MilestoneService and EscrowEngine can consult
    it with whatever row they already hold.

Failure modes:
    - UnauthorizedError from ``require()`` when the capability does not hold.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable
from uuid import UUID

from escrow_kernel.exceptions import UnauthorizedError
from escrow_kernel.logging_config import get_logger

logger = get_logger("services.access_policy")


class ContractRole(str, Enum):
    """Capability a caller must hold on a contract."""

    CLIENT = "CLIENT"
    FREELANCER = "FREELANCER"
    PARTY = "PARTY"  # either the client or the freelancer


@dataclass(frozen=True)
class ContractParties:
    contract_id: UUID
    client_id: UUID
    freelancer_id: UUID


_CAPABILITIES: dict[ContractRole, Callable[[ContractParties, UUID], bool]] = {
    ContractRole.CLIENT: lambda parties, user_id: user_id == parties.client_id,
    ContractRole.FREELANCER: lambda parties, user_id: user_id == parties.freelancer_id,
    ContractRole.PARTY: lambda parties, user_id: user_id
    in (parties.client_id, parties.freelancer_id),
}


class AccessPolicy:
    """
    Role checks for contract-scoped operations.

    Every ContractRole has exactly one capability function; adding a role
    means adding an entry to the table, not another branch.
    """

    def holds(self, role: ContractRole, parties: ContractParties, user_id: UUID) -> bool:
        return _CAPABILITIES[role](parties, user_id)

    def require(self, role: ContractRole, parties: ContractParties, user_id: UUID) -> None:
        """Raise UnauthorizedError unless ``user_id`` holds ``role``."""
        if self.holds(role, parties, user_id):
            return
        held = self.role_of(parties, user_id)
        logger.warning(
            "access_denied",
            extra={
                "user_id": str(user_id),
                "contract_id": str(parties.contract_id),
                "required_role": role.value,
                "held_role": held.value if held else None,
            },
        )
        raise UnauthorizedError(
            user_id=str(user_id),
            contract_id=str(parties.contract_id),
            required_role=role.value,
        )

    def role_of(self, parties: ContractParties, user_id: UUID) -> ContractRole | None:
        """The most specific role ``user_id`` holds, or None for outsiders."""
        for role in (ContractRole.CLIENT, ContractRole.FREELANCER):
            if self.holds(role, parties, user_id):
                return role
        return None
