"""
The acting principal.

WHAT: An immutable (profile id, role) pair describing who performs an
operation.

WHY: Every core operation receives the principal as an explicit argument.
Nothing in the services looks the acting user up from ambient state, so the
authorization rules can be exercised in isolation.
"""

from dataclasses import dataclass

from helpdesk.models.profile import Profile, ProfileRole, STAFF_ROLES, PRIVILEGED_ROLES


@dataclass(frozen=True)
class Principal:
    """Authenticated actor carrying a role."""

    profile_id: int
    """Profile primary key."""

    role: ProfileRole
    """Role that drives every access decision."""

    @property
    def is_staff(self) -> bool:
        """Employee, admin or owner."""
        return self.role in STAFF_ROLES

    @property
    def is_privileged(self) -> bool:
        """Admin or owner."""
        return self.role in PRIVILEGED_ROLES

    @classmethod
    def from_profile(cls, profile: Profile) -> "Principal":
        return cls(profile_id=profile.id, role=profile.role)
