"""
Audit History Log service.

WHAT: Builds typed history entries for every accepted ticket mutation.

WHY: A ticket's history must reconstruct its full lifecycle. This service
provides:
- One method per mutation kind, so field names and value formats are
  consistent (ids as strings, enums by value, datetimes as ISO-8601,
  None for "unset")
- Human-readable descriptions for the activity feed

HOW: Wraps HistoryDAO. Entries are appended in the caller's session so
they commit or roll back with the mutation they describe. Unlike request
audit logging, a failed append propagates: a mutation without its
history entry must not commit.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.dao.history import HistoryDAO
from helpdesk.models.history import TicketHistory, HistoryAction
from helpdesk.models.ticket import TicketStatus, TicketPriority


logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _id(value: Optional[int]) -> Optional[str]:
    return str(value) if value is not None else None


class AuditHistoryLog:
    """
    Service for appending ticket history entries.

    Example:
        async def set_priority(...):
            history = AuditHistoryLog(session)
            previous = ticket.priority
            ticket.priority = priority
            await history.record_priority_change(ticket.id, actor_id, previous, priority)
            await session.commit()
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize with the session of the enclosing mutation.

        Args:
            session: Async database session
        """
        self.dao = HistoryDAO(session)

    async def list_for(self, ticket_id: int) -> List[TicketHistory]:
        """History for a ticket, newest first."""
        return await self.dao.list_for(ticket_id)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def record_created(self, ticket_id: int, actor_id: int) -> TicketHistory:
        """Mandatory first entry of every ticket."""
        return await self.dao.append(
            ticket_id=ticket_id,
            actor_id=actor_id,
            action=HistoryAction.CREATED,
            description="Ticket created",
        )

    async def record_status_change(
        self,
        ticket_id: int,
        actor_id: int,
        old_status: TicketStatus,
        new_status: TicketStatus,
    ) -> TicketHistory:
        """
        Record a generic status change.

        Args:
            ticket_id: Ticket ID
            actor_id: Acting profile
            old_status: Status before the change
            new_status: Status after the change

        Returns:
            Created entry
        """
        return await self.dao.append(
            ticket_id=ticket_id,
            actor_id=actor_id,
            action=HistoryAction.STATUS_CHANGED,
            field_name="status",
            old_value=old_status.value,
            new_value=new_status.value,
            description=f"Status changed from {old_status.value} to {new_status.value}",
        )

    async def record_reopened(
        self,
        ticket_id: int,
        actor_id: int,
        old_status: TicketStatus = TicketStatus.CLOSED,
    ) -> TicketHistory:
        return await self.dao.append(
            ticket_id=ticket_id,
            actor_id=actor_id,
            action=HistoryAction.REOPENED,
            field_name="status",
            old_value=old_status.value,
            new_value=TicketStatus.OPEN.value,
            description="Ticket reopened",
        )

    async def record_duplicated(
        self,
        ticket_id: int,
        actor_id: int,
        old_status: TicketStatus,
        duplicate_of_id: int,
    ) -> TicketHistory:
        """
        Record duplicate marking.

        WHY: old_value keeps the status the ticket was closed from; new_value
        holds the id of the ticket it duplicates, which is the link callers
        follow.
        """
        return await self.dao.append(
            ticket_id=ticket_id,
            actor_id=actor_id,
            action=HistoryAction.DUPLICATED,
            field_name="duplicate_of",
            old_value=old_status.value,
            new_value=str(duplicate_of_id),
            description=f"Marked as duplicate of ticket #{duplicate_of_id}",
        )

    # =========================================================================
    # Field changes
    # =========================================================================

    async def record_priority_change(
        self,
        ticket_id: int,
        actor_id: int,
        old_priority: TicketPriority,
        new_priority: TicketPriority,
    ) -> TicketHistory:
        return await self.dao.append(
            ticket_id=ticket_id,
            actor_id=actor_id,
            action=HistoryAction.PRIORITY_CHANGED,
            field_name="priority",
            old_value=old_priority.value,
            new_value=new_priority.value,
            description=f"Priority changed from {old_priority.value} to {new_priority.value}",
        )

    async def record_assignment(
        self,
        ticket_id: int,
        actor_id: int,
        old_assignee_id: Optional[int],
        new_assignee_id: Optional[int],
    ) -> TicketHistory:
        """
        Record an assignment change, including unassignment.

        Args:
            ticket_id: Ticket ID
            actor_id: Acting profile
            old_assignee_id: Previous assignee (None if unassigned)
            new_assignee_id: New assignee (None to unassign)

        Returns:
            Created entry
        """
        if new_assignee_id is None:
            description = "Ticket unassigned"
        else:
            description = f"Ticket assigned to profile {new_assignee_id}"

        return await self.dao.append(
            ticket_id=ticket_id,
            actor_id=actor_id,
            action=HistoryAction.ASSIGNED,
            field_name="assignee_id",
            old_value=_id(old_assignee_id),
            new_value=_id(new_assignee_id),
            description=description,
        )

    async def record_due_date_change(
        self,
        ticket_id: int,
        actor_id: int,
        old_due_date: Optional[datetime],
        new_due_date: Optional[datetime],
    ) -> TicketHistory:
        """Record a due date change; values are ISO-8601 or None."""
        if new_due_date is None:
            description = "Due date cleared"
        else:
            description = f"Due date set to {new_due_date.isoformat()}"

        return await self.dao.append(
            ticket_id=ticket_id,
            actor_id=actor_id,
            action=HistoryAction.DUE_DATE_CHANGED,
            field_name="due_date",
            old_value=_iso(old_due_date),
            new_value=_iso(new_due_date),
            description=description,
        )
