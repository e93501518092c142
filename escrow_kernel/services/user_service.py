"""
UserService -- registry of marketplace users known to the ledger.

Responsibility:
    Registers users with a role and status, reads them back, and changes
    their standing.  WalletLedger consults it to decide whether a wallet
    may receive escrow releases.

Architecture position:
    Kernel > Services.  Authentication, profiles and OTP live outside the
    kernel; only identity, role and status are kept.

Failure modes:
    - UserNotFoundError for unknown ids.
    - ValidationError for a malformed or already-registered email, or an
      unknown role/status.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from escrow_kernel.domain.dtos import UserInfo
from escrow_kernel.exceptions import UserNotFoundError, ValidationError
from escrow_kernel.logging_config import get_logger
from escrow_kernel.models.user import User, UserRole, UserStatus
from escrow_kernel.services.base import BaseService
from escrow_kernel.utils.ids import coerce_uuid

logger = get_logger("services.user")


def _parse_enum(enum_cls, value, field: str):
    try:
        return enum_cls(value.value if isinstance(value, enum_cls) else str(value).upper())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(field, f"must be one of {allowed}, got {value!r}") from None


class UserService(BaseService[User]):
    """Create and look up users; change their status."""

    def register_user(
        self,
        email: str,
        display_name: str,
        role: UserRole | str,
        status: UserStatus | str = UserStatus.ACTIVE,
    ) -> UserInfo:
        normalized = (email or "").strip().lower()
        if "@" not in normalized or normalized.startswith("@") or normalized.endswith("@"):
            raise ValidationError("email", f"not an email address: {email!r}")
        if not (display_name or "").strip():
            raise ValidationError("display_name", "is required")
        role = _parse_enum(UserRole, role, "role")
        status = _parse_enum(UserStatus, status, "status")

        try:
            with self.atomic():
                user = User(
                    email=normalized,
                    display_name=display_name.strip(),
                    role=role.value,
                    status=status.value,
                )
                self.session.add(user)
                self.session.flush()
        except IntegrityError:
            raise ValidationError("email", f"already registered: {normalized}") from None

        logger.info(
            "user_registered",
            extra={"user_id": str(user.id), "role": role.value, "status": status.value},
        )
        return UserInfo.from_model(user)

    def get_user(self, user_id: UUID | str) -> UserInfo:
        return UserInfo.from_model(self.load(user_id))

    def find_by_email(self, email: str) -> UserInfo | None:
        user = self.session.execute(
            select(User).where(User.email == (email or "").strip().lower())
        ).scalar_one_or_none()
        return UserInfo.from_model(user) if user is not None else None

    def set_status(self, user_id: UUID | str, status: UserStatus | str) -> UserInfo:
        """Suspend, ban or reinstate a user."""
        status = _parse_enum(UserStatus, status, "status")
        with self.atomic():
            user = self._locked(select(User).where(User.id == coerce_uuid(user_id, "user_id")))
            if user is None:
                raise UserNotFoundError(str(user_id))
            previous = user.status
            user.status = status.value
            self.session.flush()

        logger.info(
            "user_status_changed",
            extra={
                "user_id": str(user.id),
                "from_status": previous,
                "to_status": status.value,
            },
        )
        return UserInfo.from_model(user)

    def load(self, user_id: UUID | str) -> User:
        """The User row, for other services.  Raises UserNotFoundError."""
        uid = coerce_uuid(user_id, "user_id")
        user = self.session.get(User, uid)
        if user is None:
            raise UserNotFoundError(str(uid))
        return user
