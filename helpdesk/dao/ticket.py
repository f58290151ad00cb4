"""
Ticket Data Access Object.

WHAT: DAOs for tickets, comments and attachments.

WHY: Encapsulates all ticket database operations with:
1. Visibility-scoped queries (the predicate comes from the access control
   resolver; DAOs never decide who sees what)
2. Search, filtering and pagination
3. Role-scoped dashboard statistics
4. Insert-only comment and attachment storage

HOW: Uses SQLAlchemy 2.0 async with proper session management. DAOs flush
but never commit.
"""

from datetime import datetime, timedelta
from typing import Any, Optional, List, Tuple

from sqlalchemy import select, func, or_, and_, case
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.sql.elements import ColumnElement

from helpdesk.models.ticket import (
    Ticket,
    TicketStatus,
    TicketPriority,
    TicketComment,
    TicketAttachment,
    HIGH_PRIORITIES,
)


LIKE_ESCAPE = "\\"


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user input matches literally."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


class TicketDAO:
    """
    Data Access Object for Ticket operations.

    WHAT: Manages ticket creation, lookups and list queries.

    WHY: Centralizes database operations for:
    - Consistent visibility scoping
    - Eager loading of the people shown next to a ticket
    - Dashboard counts

    HOW: All methods are async and use session for transactions.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize TicketDAO with database session.

        Args:
            session: AsyncSession for database operations
        """
        self.session = session

    # =========================================================================
    # CRUD Operations
    # =========================================================================

    async def create(
        self,
        submitter_id: int,
        title: str,
        description: str,
        priority: TicketPriority = TicketPriority.NORMAL,
        category_id: Optional[int] = None,
        due_date: Optional[datetime] = None,
    ) -> Ticket:
        """
        Create a new support ticket.

        WHAT: Inserts an OPEN ticket owned by its submitter.

        Args:
            submitter_id: Profile creating the ticket
            title: Ticket title
            description: Detailed description
            priority: Ticket priority
            category_id: Optional category
            due_date: Optional due date

        Returns:
            Created Ticket instance
        """
        now = datetime.utcnow()
        ticket = Ticket(
            submitter_id=submitter_id,
            title=title,
            description=description,
            status=TicketStatus.OPEN,
            priority=priority,
            category_id=category_id,
            due_date=due_date,
            created_at=now,
            updated_at=now,
        )

        self.session.add(ticket)
        await self.session.flush()
        await self.session.refresh(ticket)

        return ticket

    async def get_by_id(
        self,
        ticket_id: int,
        visible_clause: Optional[ColumnElement[bool]] = None,
    ) -> Optional[Ticket]:
        """
        Get ticket by ID with optional visibility scoping.

        Args:
            ticket_id: Ticket ID
            visible_clause: Predicate from the access control resolver

        Returns:
            Ticket or None if not found (or not visible)
        """
        query = select(Ticket).where(Ticket.id == ticket_id)

        if visible_clause is not None:
            query = query.where(visible_clause)

        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_id_with_relations(
        self,
        ticket_id: int,
        visible_clause: Optional[ColumnElement[bool]] = None,
    ) -> Optional[Ticket]:
        """
        Get ticket by ID with submitter, assignee and category loaded.

        WHY: Relationships can't be lazy-loaded in async context, so
        anything rendered next to the ticket is loaded up front.
        """
        query = (
            select(Ticket)
            .options(
                selectinload(Ticket.submitter),
                selectinload(Ticket.assignee),
                selectinload(Ticket.category),
            )
            .where(Ticket.id == ticket_id)
            .execution_options(populate_existing=True)
        )

        if visible_clause is not None:
            query = query.where(visible_clause)

        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list(
        self,
        visible_clause: ColumnElement[bool],
        skip: int = 0,
        limit: int = 20,
        status: Optional[TicketStatus] = None,
        priority: Optional[TicketPriority] = None,
        category_id: Optional[int] = None,
        assignee_id: Optional[int] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[Ticket], int]:
        """
        List visible tickets with filtering and pagination.

        Args:
            visible_clause: Predicate from the access control resolver
            skip: Number of records to skip
            limit: Maximum records to return
            status: Filter by status
            priority: Filter by priority
            category_id: Filter by category
            assignee_id: Filter by assignee
            search: Search in title and description

        Returns:
            Tuple of (tickets list newest first, total count)
        """
        base_query = select(Ticket).where(visible_clause)

        if status is not None:
            base_query = base_query.where(Ticket.status == status)

        if priority is not None:
            base_query = base_query.where(Ticket.priority == priority)

        if category_id is not None:
            base_query = base_query.where(Ticket.category_id == category_id)

        if assignee_id is not None:
            base_query = base_query.where(Ticket.assignee_id == assignee_id)

        if search:
            # Match the text literally: "100%" must not act as a wildcard
            search_pattern = f"%{escape_like(search)}%"
            base_query = base_query.where(
                or_(
                    Ticket.title.ilike(search_pattern, escape=LIKE_ESCAPE),
                    Ticket.description.ilike(search_pattern, escape=LIKE_ESCAPE),
                )
            )

        count_query = select(func.count()).select_from(base_query.subquery())
        total_result = await self.session.execute(count_query)
        total = total_result.scalar_one()

        # WHY: Eager loading prevents N+1 queries and allows accessing
        # relationships without lazy loading in async context.
        list_query = (
            base_query.options(
                selectinload(Ticket.submitter),
                selectinload(Ticket.assignee),
                selectinload(Ticket.category),
            )
            .order_by(Ticket.created_at.desc(), Ticket.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(list_query)
        tickets = list(result.scalars().all())

        return tickets, total

    async def save(self, ticket: Ticket) -> Ticket:
        """
        Flush pending changes on a ticket.

        WHY: The state machine mutates the loaded instance; this pushes the
        change into the current transaction next to its history entry.
        """
        await self.session.flush()
        await self.session.refresh(ticket)
        return ticket

    # =========================================================================
    # Statistics
    # =========================================================================

    async def get_stats(
        self,
        visible_clause: ColumnElement[bool],
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Get ticket statistics over the tickets a principal can see.

        WHAT: Counts for dashboard widgets: totals per status, high
        priority (high + urgent), overdue, and created/closed in the last
        seven days.

        Args:
            visible_clause: Predicate from the access control resolver
            now: Reference time (defaults to utcnow)

        Returns:
            Dictionary of counts
        """
        now = now or datetime.utcnow()
        week_ago = now - timedelta(days=7)

        def count_where(*conditions: Any):
            return func.coalesce(func.sum(case((and_(*conditions), 1), else_=0)), 0)

        query = select(
            func.count(Ticket.id),
            count_where(Ticket.status == TicketStatus.OPEN),
            count_where(Ticket.status == TicketStatus.WAITING),
            count_where(Ticket.status == TicketStatus.CLOSED),
            count_where(Ticket.priority.in_(HIGH_PRIORITIES)),
            count_where(
                Ticket.due_date.isnot(None),
                Ticket.due_date < now,
                Ticket.status != TicketStatus.CLOSED,
            ),
            count_where(Ticket.created_at >= week_ago),
            count_where(
                Ticket.closed_at.isnot(None),
                Ticket.closed_at >= week_ago,
            ),
        ).where(visible_clause)

        row = (await self.session.execute(query)).one()

        return {
            "total": int(row[0] or 0),
            "open": int(row[1]),
            "waiting": int(row[2]),
            "closed": int(row[3]),
            "high_priority": int(row[4]),
            "overdue": int(row[5]),
            "created_this_week": int(row[6]),
            "closed_this_week": int(row[7]),
        }


class TicketCommentDAO:
    """
    Data Access Object for TicketComment operations.

    Comments are insert-only: there is no update or delete method.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        ticket_id: int,
        author_id: int,
        content: str,
        is_private: bool = False,
    ) -> TicketComment:
        """
        Create a new comment on a ticket.

        Args:
            ticket_id: Ticket ID
            author_id: Profile writing the comment
            content: Comment content
            is_private: Whether this is a staff-only note

        Returns:
            Created TicketComment
        """
        comment = TicketComment(
            ticket_id=ticket_id,
            author_id=author_id,
            content=content,
            is_private=is_private,
            created_at=datetime.utcnow(),
        )

        self.session.add(comment)
        await self.session.flush()
        await self.session.refresh(comment)

        return comment

    async def get_by_id(
        self,
        comment_id: int,
    ) -> Optional[TicketComment]:
        """Get comment by ID."""
        query = select(TicketComment).where(TicketComment.id == comment_id)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_for_ticket(
        self,
        ticket_id: int,
        include_private: bool = True,
    ) -> List[TicketComment]:
        """
        List comments for a ticket, oldest first.

        Args:
            ticket_id: Ticket ID
            include_private: Whether to include private notes

        Returns:
            List of comments with authors loaded
        """
        query = (
            select(TicketComment)
            .options(selectinload(TicketComment.author))
            .where(TicketComment.ticket_id == ticket_id)
        )

        if not include_private:
            query = query.where(TicketComment.is_private.is_(False))

        query = query.order_by(TicketComment.created_at.asc(), TicketComment.id.asc())

        result = await self.session.execute(query)
        return list(result.scalars().all())


class TicketAttachmentDAO:
    """
    Data Access Object for TicketAttachment operations.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        ticket_id: int,
        uploader_id: int,
        filename: str,
        blob_ref: str,
        byte_size: int,
        mime_type: str,
    ) -> TicketAttachment:
        """
        Create a new attachment record.

        Args:
            ticket_id: Ticket ID
            uploader_id: Profile uploading
            filename: Original filename
            blob_ref: Locator in the blob store
            byte_size: File size in bytes
            mime_type: MIME type

        Returns:
            Created TicketAttachment
        """
        attachment = TicketAttachment(
            ticket_id=ticket_id,
            uploader_id=uploader_id,
            filename=filename,
            blob_ref=blob_ref,
            byte_size=byte_size,
            mime_type=mime_type,
            created_at=datetime.utcnow(),
        )

        self.session.add(attachment)
        await self.session.flush()
        await self.session.refresh(attachment)

        return attachment

    async def get_by_id(
        self,
        attachment_id: int,
    ) -> Optional[TicketAttachment]:
        """Get attachment by ID."""
        query = select(TicketAttachment).where(TicketAttachment.id == attachment_id)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_for_ticket(
        self,
        ticket_id: int,
    ) -> List[TicketAttachment]:
        """List attachments for a ticket, oldest first."""
        query = (
            select(TicketAttachment)
            .where(TicketAttachment.ticket_id == ticket_id)
            .order_by(TicketAttachment.created_at.asc(), TicketAttachment.id.asc())
        )

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def delete(self, attachment: TicketAttachment) -> None:
        """
        Delete an attachment record.

        WHY: Only the attachment binder calls this, and only after the
        blob store confirmed the blob is gone.
        """
        await self.session.delete(attachment)
        await self.session.flush()
