"""
Module: escrow_kernel.models.user
Responsibility: ORM persistence for marketplace users.  Only the identity,
    role and status the ledger needs are kept here; profiles and
    authentication live outside the kernel.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - email is unique (uq_user_email).
    - role and status are restricted to the enum values (CHECK constraints).

Audit relevance:
    role and status decide whether a wallet may receive escrow releases:
    only an ACTIVE FREELANCER can be credited.
"""

from enum import Enum

from sqlalchemy import CheckConstraint, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from escrow_kernel.db.base import TrackedBase


class UserRole(str, Enum):
    """Marketplace role.  Fixed at registration."""

    CLIENT = "CLIENT"
    FREELANCER = "FREELANCER"
    ADMIN = "ADMIN"


class UserStatus(str, Enum):
    """Account standing.  Only ACTIVE users can transact."""

    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    BANNED = "BANNED"


class User(TrackedBase):
    """
    A marketplace participant.

    Guarantees:
        - email is globally unique.
        - role is one of CLIENT, FREELANCER, ADMIN.
        - status is one of ACTIVE, SUSPENDED, BANNED.
    """

    __tablename__ = "users"

    __table_args__ = (
        UniqueConstraint("email", name="uq_user_email"),
        CheckConstraint(
            "role IN ('CLIENT', 'FREELANCER', 'ADMIN')",
            name="ck_user_valid_role",
        ),
        CheckConstraint(
            "status IN ('ACTIVE', 'SUSPENDED', 'BANNED')",
            name="ck_user_valid_status",
        ),
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    display_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    role: Mapped[UserRole] = mapped_column(
        String(20),
        nullable=False,
    )

    status: Mapped[UserStatus] = mapped_column(
        String(20),
        nullable=False,
        default=UserStatus.ACTIVE.value,
    )

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @property
    def is_active_freelancer(self) -> bool:
        """True iff the user may receive escrow releases."""
        return self.role == UserRole.FREELANCER and self.status == UserStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role}, {self.status})>"
