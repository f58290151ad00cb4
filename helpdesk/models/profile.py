"""
Profile model.

WHY: Profiles are the active-principal directory. Authentication happens
in an external provider; a profile links the provider's subject id to the
role that drives every access decision in the core.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, String, Boolean, DateTime, Enum as SQLEnum, Index
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.models.base import Base


class ProfileRole(str, enum.Enum):
    """
    Principal role enumeration.

    WHY: Enum ensures only valid roles can be assigned:
    - USER: submits tickets and sees only their own
    - EMPLOYEE: sees tickets they submitted or are assigned to
    - ADMIN / OWNER: unrestricted
    """

    USER = "user"
    EMPLOYEE = "employee"
    ADMIN = "admin"
    OWNER = "owner"


# Roles allowed to triage tickets (status, priority, due date)
STAFF_ROLES = frozenset({ProfileRole.EMPLOYEE, ProfileRole.ADMIN, ProfileRole.OWNER})

# Roles that see every ticket and may reassign
PRIVILEGED_ROLES = frozenset({ProfileRole.ADMIN, ProfileRole.OWNER})


class Profile(Base):
    """
    A person known to the helpdesk.

    WHY: Tickets reference profiles as submitter, assignee, comment author
    and history actor. The notification dispatcher also reads profiles to
    resolve "all admins" / "all employees" to e-mail addresses.
    """

    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Subject id issued by the external auth provider (JWT "sub")
    user_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    role: Mapped[ProfileRole] = mapped_column(
        SQLEnum(ProfileRole, name="profilerole"),
        default=ProfileRole.USER,
        nullable=False,
    )

    # WHY: Deactivated profiles keep their history but can't act or be notified
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_profiles_role", "role"),
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, email='{self.email}', role={self.role.value})>"

    @property
    def display_name(self) -> str:
        """Name to show in comments and notifications."""
        return self.full_name or self.email

    @property
    def is_staff(self) -> bool:
        """Check if profile may be assigned tickets."""
        return self.role in STAFF_ROLES
