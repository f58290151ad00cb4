"""
Ticket History Data Access Object (DAO).

WHAT: Data access layer for the per-ticket audit trail.

WHY: The history of a ticket must be a gapless reconstruction of every
accepted mutation. This DAO provides:
- Insert-only appends (no update or delete path)
- A total order: created_at, ties broken by insertion sequence

HOW: Entries are added to the caller's session, so they commit or roll
back together with the mutation they describe.
"""

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from helpdesk.models.history import TicketHistory, HistoryAction
from helpdesk.core.exceptions import HistoryImmutableError


class HistoryDAO:
    """
    Data Access Object for ticket history entries.

    WHAT: Appends and lists history entries.

    WHY: Immutability is enforced here: update and delete always raise.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize HistoryDAO with database session.

        Args:
            session: Async database session
        """
        self.session = session

    async def append(
        self,
        ticket_id: int,
        actor_id: int,
        action: HistoryAction,
        description: str,
        field_name: Optional[str] = None,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
    ) -> TicketHistory:
        """
        Append a history entry.

        Args:
            ticket_id: Ticket the mutation applied to
            actor_id: Profile that performed it
            action: Kind of mutation
            description: Human-readable summary
            field_name: Changed field, if any
            old_value: Previous value as string (None for unset)
            new_value: New value as string (None for unset)

        Returns:
            The created TicketHistory entry
        """
        entry = TicketHistory(
            ticket_id=ticket_id,
            actor_id=actor_id,
            action=action,
            field_name=field_name,
            old_value=old_value,
            new_value=new_value,
            description=description,
            created_at=datetime.utcnow(),
        )
        self.session.add(entry)
        await self.session.flush()
        await self.session.refresh(entry)
        return entry

    async def list_for(self, ticket_id: int) -> List[TicketHistory]:
        """
        List history for a ticket, newest first.

        Args:
            ticket_id: Ticket ID

        Returns:
            Entries ordered by created_at DESC, then insertion sequence DESC
        """
        result = await self.session.execute(
            select(TicketHistory)
            .options(selectinload(TicketHistory.actor))
            .where(TicketHistory.ticket_id == ticket_id)
            .order_by(TicketHistory.created_at.desc(), TicketHistory.id.desc())
        )
        return list(result.scalars().all())

    async def count_for(self, ticket_id: int, action: Optional[HistoryAction] = None) -> int:
        """Count entries for a ticket, optionally of one action."""
        query = select(func.count(TicketHistory.id)).where(TicketHistory.ticket_id == ticket_id)
        if action is not None:
            query = query.where(TicketHistory.action == action)
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def update(self, entry_id: int, **kwargs: Any) -> None:
        """
        Attempt to update a history entry (BLOCKED).

        Raises:
            HistoryImmutableError: Always raised - updates not allowed
        """
        raise HistoryImmutableError(
            "Ticket history entries are immutable and cannot be updated.",
            entry_id=entry_id,
        )

    async def delete(self, entry_id: int) -> None:
        """
        Attempt to delete a history entry (BLOCKED).

        Raises:
            HistoryImmutableError: Always raised - deletions not allowed
        """
        raise HistoryImmutableError(
            "Ticket history entries cannot be deleted.",
            entry_id=entry_id,
        )
