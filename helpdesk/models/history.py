"""
Ticket History Model.

WHAT: SQLAlchemy model for the per-ticket audit trail.

WHY: Every accepted ticket mutation leaves exactly one entry, so the
history of a ticket is a complete reconstruction from its creation onward.

HOW: Append-only table. The autoincrement id doubles as the insertion
sequence that breaks created_at ties when ordering entries.
"""

import enum
from typing import Optional, TYPE_CHECKING

from sqlalchemy import Integer, String, Text, ForeignKey, Enum as SQLEnum, Index
from sqlalchemy.orm import relationship, Mapped, mapped_column

from helpdesk.models.base import Base, CreatedAtMixin

if TYPE_CHECKING:
    from helpdesk.models.profile import Profile
    from helpdesk.models.ticket import Ticket


class HistoryAction(str, enum.Enum):
    """Kinds of accepted ticket mutations."""

    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    PRIORITY_CHANGED = "priority_changed"
    ASSIGNED = "assigned"
    DUE_DATE_CHANGED = "due_date_changed"
    REOPENED = "reopened"
    DUPLICATED = "duplicated"


class TicketHistory(CreatedAtMixin, Base):
    """
    Immutable record of one accepted ticket mutation.

    Fields:
    - action: what happened
    - field_name / old_value / new_value: the changed field, as strings
      (ids, enum values, ISO-8601 timestamps) or None for "unset"
    - description: human-readable summary
    """

    __tablename__ = "ticket_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    actor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id"), nullable=False
    )

    action: Mapped[HistoryAction] = mapped_column(
        SQLEnum(HistoryAction, name="historyaction"), nullable=False
    )
    field_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    old_value: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    new_value: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Relationships
    ticket: Mapped["Ticket"] = relationship("Ticket", back_populates="history")
    actor: Mapped["Profile"] = relationship("Profile")

    __table_args__ = (
        Index("ix_ticket_history_ticket_created", "ticket_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<TicketHistory(id={self.id}, ticket_id={self.ticket_id}, action={self.action.value})>"
