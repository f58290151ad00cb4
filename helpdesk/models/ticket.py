"""
Ticket models for the support ticketing system.

WHAT: SQLAlchemy models for categories, tickets, comments, and attachments.

WHY: Provides structured support request management with:
1. A three-state lifecycle (open ⇄ waiting → closed, reopen back to open)
2. Submitter/assignee scoping for role-based visibility
3. Public comments and private staff notes
4. Attachments stored in an external blob store

HOW: Uses SQLAlchemy 2.0 with:
- Enums for status and priority fields
- Foreign keys to profiles and categories
- Cascading relationships so a ticket owns its comments, attachments and history
- Proper indexing for the visibility predicate (submitter, assignee)
"""

from datetime import datetime
from enum import Enum
from typing import Optional, List, TYPE_CHECKING

from sqlalchemy import (
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    Enum as SQLEnum,
    Index,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from helpdesk.models.base import Base, CreatedAtMixin

if TYPE_CHECKING:
    from helpdesk.models.history import TicketHistory
    from helpdesk.models.profile import Profile


# ============================================================================
# Enums
# ============================================================================


class TicketStatus(str, Enum):
    """
    Ticket status values.

    WHAT: Tracks the lifecycle of a support ticket.

    WHY: Status determines who still has work to do:
    - OPEN: New or reopened ticket, waiting on staff
    - WAITING: Waiting on the submitter or a third party
    - CLOSED: Terminal state; only an explicit reopen leaves it

    A ticket marked as duplicate is CLOSED plus a "duplicated" history entry.
    """

    OPEN = "open"
    WAITING = "waiting"
    CLOSED = "closed"


class TicketPriority(str, Enum):
    """Ticket priority levels."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


# Priorities counted as "high priority" on the dashboard
HIGH_PRIORITIES = (TicketPriority.HIGH, TicketPriority.URGENT)


# ============================================================================
# Category Model
# ============================================================================


class Category(Base):
    """
    Ticket category for classification and routing.

    WHY: Administrators maintain categories; tickets optionally point to one.
    """

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Category(id={self.id}, name='{self.name}')>"


# ============================================================================
# Ticket Model
# ============================================================================


class Ticket(Base):
    """
    Support ticket.

    WHAT: Represents a support request or issue.

    Invariants:
    - submitter_id is set at creation and never changes
    - closed_at is set iff status is CLOSED
    - assignee_id, when set, points at an active employee/admin/owner

    Security: visibility is decided by the access control resolver, never
    by callers filtering on their own.
    """

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Ticket details
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Classification
    status: Mapped[TicketStatus] = mapped_column(
        SQLEnum(TicketStatus, name="ticketstatus"),
        default=TicketStatus.OPEN,
        nullable=False,
    )
    priority: Mapped[TicketPriority] = mapped_column(
        SQLEnum(TicketPriority, name="ticketpriority"),
        default=TicketPriority.NORMAL,
        nullable=False,
    )
    category_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("categories.id"), nullable=True
    )

    # People
    submitter_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id"), nullable=False
    )
    assignee_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("profiles.id"), nullable=True
    )

    # Dates
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    category: Mapped[Optional["Category"]] = relationship("Category")
    submitter: Mapped["Profile"] = relationship("Profile", foreign_keys=[submitter_id])
    assignee: Mapped[Optional["Profile"]] = relationship("Profile", foreign_keys=[assignee_id])
    comments: Mapped[List["TicketComment"]] = relationship(
        "TicketComment", back_populates="ticket", cascade="all, delete-orphan"
    )
    attachments: Mapped[List["TicketAttachment"]] = relationship(
        "TicketAttachment", back_populates="ticket", cascade="all, delete-orphan"
    )
    history: Mapped[List["TicketHistory"]] = relationship(
        "TicketHistory", back_populates="ticket", cascade="all, delete-orphan"
    )

    # Indexes for the visibility predicate and list ordering
    __table_args__ = (
        Index("ix_tickets_status", "status"),
        Index("ix_tickets_priority", "priority"),
        Index("ix_tickets_submitter_id", "submitter_id"),
        Index("ix_tickets_assignee_id", "assignee_id"),
        Index("ix_tickets_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Ticket(id={self.id}, title='{self.title[:30]}...', status={self.status.value})>"

    @property
    def is_closed(self) -> bool:
        return self.status == TicketStatus.CLOSED

    @property
    def is_overdue(self) -> bool:
        """Check if the due date passed while the ticket is still open."""
        if self.due_date is None or self.is_closed:
            return False
        return datetime.utcnow() > self.due_date


# ============================================================================
# TicketComment Model
# ============================================================================


class TicketComment(CreatedAtMixin, Base):
    """
    Comment on a ticket.

    WHAT: A reply, a private staff note, or a system note written by a
    lifecycle operation (reopen, duplicate marking).

    Security: is_private notes are visible to employee/admin/owner only.
    Comments are immutable; there is no edit or delete path.
    """

    __tablename__ = "ticket_comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id"), nullable=False
    )

    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    ticket: Mapped["Ticket"] = relationship("Ticket", back_populates="comments")
    author: Mapped["Profile"] = relationship("Profile")

    __table_args__ = (
        Index("ix_ticket_comments_ticket_id", "ticket_id"),
        Index("ix_ticket_comments_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<TicketComment(id={self.id}, ticket_id={self.ticket_id}, is_private={self.is_private})>"


# ============================================================================
# TicketAttachment Model
# ============================================================================


class TicketAttachment(CreatedAtMixin, Base):
    """
    File attached to a ticket.

    WHAT: Metadata for a blob held by the attachment binder's store.

    Security: blob_ref is never returned to callers; downloads go
    through short-lived signed URLs.
    """

    __tablename__ = "ticket_attachments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    uploader_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("profiles.id"), nullable=False
    )

    # File details
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    byte_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    blob_ref: Mapped[str] = mapped_column(String(500), nullable=False)

    # Relationships
    ticket: Mapped["Ticket"] = relationship("Ticket", back_populates="attachments")

    __table_args__ = (
        Index("ix_ticket_attachments_ticket_id", "ticket_id"),
    )

    def __repr__(self) -> str:
        return f"<TicketAttachment(id={self.id}, filename='{self.filename}')>"
