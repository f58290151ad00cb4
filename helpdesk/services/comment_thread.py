"""
Comment Thread.

WHAT: Appends comments to a ticket and lists the ones a principal may read.

WHY: Comments are append-only, and private notes are staff-only. Keeping
the visibility clamp here means no read path can leak a private note by
forgetting a filter.

HOW: Thin service over TicketCommentDAO. Authorization to write is checked
by the caller through the access control resolver; this module enforces
content rules and read visibility.
"""

from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.exceptions import ValidationError
from helpdesk.core.principal import Principal
from helpdesk.dao.ticket import TicketDAO, TicketCommentDAO
from helpdesk.models.ticket import TicketComment
from helpdesk.services.access_control import can_see_comment, visible_tickets_clause


class CommentThread:
    """Append-only comment storage with role-clamped reads."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.comment_dao = TicketCommentDAO(session)
        self.ticket_dao = TicketDAO(session)

    async def add(
        self,
        ticket_id: int,
        author_id: int,
        content: str,
        is_private: bool = False,
    ) -> TicketComment:
        """
        Append a comment.

        Args:
            ticket_id: Ticket ID
            author_id: Writing profile
            content: Comment text
            is_private: Staff-only note

        Returns:
            Created comment (flushed, not committed)

        Raises:
            ValidationError: If content is blank
        """
        if content is None or not content.strip():
            raise ValidationError(
                message="Comment content must not be empty",
                ticket_id=ticket_id,
            )

        return await self.comment_dao.create(
            ticket_id=ticket_id,
            author_id=author_id,
            content=content,
            is_private=is_private,
        )

    async def list_visible_for(
        self,
        principal: Principal,
        ticket_id: int,
        include_private: bool = True,
    ) -> List[TicketComment]:
        """
        List the comments a principal may read, oldest first.

        WHY: include_private is a request, not a permission. The access
        control resolver decides per comment, so non-staff principals
        never get private notes regardless of the flag, and a ticket the
        principal cannot see yields an empty list rather than an error.

        Args:
            principal: Reading principal
            ticket_id: Ticket ID
            include_private: Whether private notes are wanted

        Returns:
            Visible comments
        """
        ticket = await self.ticket_dao.get_by_id(ticket_id, visible_tickets_clause(principal))
        if ticket is None:
            return []

        comments = await self.comment_dao.list_for_ticket(
            ticket_id=ticket_id,
            include_private=include_private,
        )
        return [c for c in comments if can_see_comment(principal, c)]
