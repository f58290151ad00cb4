"""
Ticket Service.

WHAT: The operations callers use to create, triage, discuss and attach
files to support tickets.

WHY: Each mutation has to line up several concerns in a fixed order:
1. Load the ticket (missing → TicketNotFoundError)
2. Ask the access control resolver (denied → AuthorizationError)
3. Validate the transition or value
4. Apply the change, append history and any system comment
5. Commit once
6. Schedule the notification

Anything failing before step 5 rolls back, so a rejected or failed
mutation never leaves a history entry behind. Notifications are only
scheduled after the commit, and their failures never reach the caller.

HOW: Coordinates the DAOs, TicketStateMachine, AuditHistoryLog,
CommentThread, AttachmentBinder and NotificationDispatcher. The acting
Principal is always passed explicitly.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.config import settings
from helpdesk.core.exceptions import (
    AppException,
    ValidationError,
    TicketNotFoundError,
    AttachmentNotFoundError,
    CategoryNotFoundError,
    DatabaseError,
)
from helpdesk.core.principal import Principal
from helpdesk.dao.profile import ProfileDAO, CategoryDAO
from helpdesk.dao.ticket import TicketDAO, TicketAttachmentDAO
from helpdesk.models.history import TicketHistory
from helpdesk.models.notification_rule import NotificationEventType
from helpdesk.models.profile import STAFF_ROLES
from helpdesk.models.ticket import (
    Ticket,
    TicketStatus,
    TicketPriority,
    TicketComment,
    TicketAttachment,
)
from helpdesk.services.access_control import (
    MutationIntent,
    ensure_can_mutate,
    ensure_can_create_ticket,
    can_see_ticket,
    visible_tickets_clause,
)
from helpdesk.services.attachment_binder import AttachmentBinder, UploadedBlob
from helpdesk.services.audit import AuditHistoryLog
from helpdesk.services.blob_store import BlobStore, get_blob_store
from helpdesk.services.comment_thread import CommentThread
from helpdesk.services.notification_dispatcher import (
    NotificationDispatcher,
    NotificationEvent,
    get_dispatcher,
)
from helpdesk.services.state_machine import TicketStateMachine

logger = logging.getLogger(__name__)


REOPEN_COMMENT = "Ticket reopened for further analysis by {actor}."
DUPLICATE_COMMENT = "Ticket marked as duplicate. Related ticket: #{ticket_id}"


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@dataclass
class BulkUpdateOutcome:
    """Result of a bulk update for one ticket."""

    ticket_id: int
    applied: List[str] = field(default_factory=list)
    error: Optional[AppException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TicketService:
    """
    Service for ticket lifecycle operations.

    Example:
        service = TicketService(db)
        ticket = await service.create_ticket(principal, "VPN down", "Since 9am")
        await service.change_status(principal, ticket.id, TicketStatus.CLOSED)
    """

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: Optional[NotificationDispatcher] = None,
        blob_store: Optional[BlobStore] = None,
    ):
        """
        Initialize TicketService.

        Args:
            session: Async database session
            dispatcher: Notification dispatcher (defaults to the global one)
            blob_store: Attachment blob store (defaults to the configured one)
        """
        self.session = session
        self.ticket_dao = TicketDAO(session)
        self.attachment_dao = TicketAttachmentDAO(session)
        self.profile_dao = ProfileDAO(session)
        self.category_dao = CategoryDAO(session)
        self.history = AuditHistoryLog(session)
        self.comments = CommentThread(session)
        self.dispatcher = dispatcher or get_dispatcher()
        self._blob_store = blob_store

    @property
    def binder(self) -> AttachmentBinder:
        return AttachmentBinder(self.session, self._blob_store or get_blob_store())

    # =========================================================================
    # Helpers
    # =========================================================================

    @asynccontextmanager
    async def _atomic(self, operation: str, ticket_id: Optional[int] = None):
        """
        Commit the enclosed writes once, or roll all of them back.

        Raises:
            DatabaseError: If a write or the commit fails
        """
        try:
            yield
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"{operation} on ticket {ticket_id} rolled back: {e}")
            raise DatabaseError(
                message=f"Could not {operation.replace('_', ' ')}",
                ticket_id=ticket_id,
            )
        except Exception:
            await self.session.rollback()
            raise

    async def _load_for_mutation(self, ticket_id: int) -> Ticket:
        ticket = await self.ticket_dao.get_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id=ticket_id)
        return ticket

    async def _actor_name(self, principal: Principal) -> str:
        profile = await self.profile_dao.get_by_id(principal.profile_id)
        return profile.display_name if profile else "System"

    async def _reload(self, ticket_id: int) -> Ticket:
        return await self.ticket_dao.get_by_id_with_relations(ticket_id)

    def _notify(
        self,
        event_type: NotificationEventType,
        ticket: Ticket,
        actor_name: Optional[str],
        message: str = "",
        explicit_recipients: Tuple[str, ...] = (),
    ) -> None:
        self.dispatcher.dispatch_in_background(
            NotificationEvent(
                type=event_type,
                ticket_id=ticket.id,
                ticket_title=ticket.title,
                actor_name=actor_name,
                message=message,
                explicit_recipients=explicit_recipients,
            )
        )

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_ticket(
        self,
        principal: Principal,
        title: str,
        description: str,
        priority: TicketPriority = TicketPriority.NORMAL,
        category_id: Optional[int] = None,
        due_date: Optional[datetime] = None,
    ) -> Ticket:
        """
        Open a ticket with the principal as submitter.

        Args:
            principal: Acting principal (any role)
            title: Ticket title
            description: Problem description
            priority: Initial priority
            category_id: Optional category
            due_date: Optional due date

        Returns:
            Created ticket with relations loaded

        Raises:
            AuthorizationError: Principal may not open tickets
            ValidationError: Blank title or description
            CategoryNotFoundError: Unknown or inactive category
        """
        ensure_can_create_ticket(principal)

        title = (title or "").strip()
        description = (description or "").strip()
        if not title:
            raise ValidationError(message="Title is required", field="title")
        if not description:
            raise ValidationError(message="Description is required", field="description")

        if category_id is not None:
            category = await self.category_dao.get_by_id(category_id)
            if category is None or not category.is_active:
                raise CategoryNotFoundError(category_id=category_id)

        async with self._atomic("create_ticket"):
            ticket = await self.ticket_dao.create(
                submitter_id=principal.profile_id,
                title=title,
                description=description,
                priority=priority,
                category_id=category_id,
                due_date=_naive_utc(due_date),
            )
            await self.history.record_created(ticket.id, principal.profile_id)

        logger.info(f"Ticket {ticket.id} created by profile {principal.profile_id}")

        actor = await self._actor_name(principal)
        self._notify(NotificationEventType.TICKET_CREATED, ticket, actor, message=description)

        return await self._reload(ticket.id)

    # =========================================================================
    # Lifecycle transitions
    # =========================================================================

    async def change_status(
        self,
        principal: Principal,
        ticket_id: int,
        status: TicketStatus,
        comment: Optional[str] = None,
    ) -> Ticket:
        """
        Move a ticket between open, waiting and closed.

        WHAT: Closing sets closed_at and may carry a public closing comment.

        Raises:
            TicketNotFoundError: Ticket does not exist
            AuthorizationError: Principal may not change status
            InvalidTransitionError: Same status, or leaving closed (use reopen)
        """
        ticket = await self._load_for_mutation(ticket_id)
        ensure_can_mutate(principal, ticket, MutationIntent.CHANGE_STATUS)
        TicketStateMachine.assert_status_change(ticket, status)

        comment = comment.strip() if comment else None

        async with self._atomic("change_status", ticket_id):
            previous = TicketStateMachine.apply_status(ticket, status)
            await self.ticket_dao.save(ticket)
            await self.history.record_status_change(
                ticket.id, principal.profile_id, previous, status
            )
            if comment:
                await self.comments.add(ticket.id, principal.profile_id, comment)

        logger.info(
            f"Ticket {ticket.id} moved {previous.value} -> {status.value} "
            f"by profile {principal.profile_id}"
        )

        actor = await self._actor_name(principal)
        if status == TicketStatus.CLOSED:
            event_type = NotificationEventType.TICKET_CLOSED
        else:
            event_type = NotificationEventType.TICKET_UPDATED
        message = comment or f"Status changed from {previous.value} to {status.value}"
        self._notify(event_type, ticket, actor, message=message)

        return await self._reload(ticket.id)

    async def reopen(self, principal: Principal, ticket_id: int) -> Ticket:
        """
        Reopen a closed ticket.

        WHAT: closed → open, clears closed_at, writes a "reopened" entry and
        a public system comment naming the actor.

        Raises:
            TicketNotFoundError, AuthorizationError, InvalidTransitionError
        """
        ticket = await self._load_for_mutation(ticket_id)
        ensure_can_mutate(principal, ticket, MutationIntent.REOPEN)
        TicketStateMachine.assert_reopen(ticket)

        actor = await self._actor_name(principal)

        async with self._atomic("reopen", ticket_id):
            previous = TicketStateMachine.apply_status(ticket, TicketStatus.OPEN)
            await self.ticket_dao.save(ticket)
            await self.history.record_reopened(ticket.id, principal.profile_id, previous)
            await self.comments.add(
                ticket.id,
                principal.profile_id,
                REOPEN_COMMENT.format(actor=actor),
            )

        logger.info(f"Ticket {ticket.id} reopened by profile {principal.profile_id}")

        self._notify(
            NotificationEventType.TICKET_REOPENED,
            ticket,
            actor,
            message=f"Ticket reopened by {actor}",
        )

        return await self._reload(ticket.id)

    async def mark_duplicate(
        self,
        principal: Principal,
        ticket_id: int,
        duplicate_of_id: int,
    ) -> Ticket:
        """
        Close a ticket as a duplicate of another.

        WHAT: Closes the ticket, writes a "duplicated" entry whose new_value
        is the linked ticket id, and adds a public comment naming it. The
        linked ticket is not modified.

        Raises:
            TicketNotFoundError: Either ticket missing (the linked one also
                when the principal cannot see it)
            AuthorizationError: Principal may not mark duplicates
            ValidationError: Ticket references itself
            InvalidTransitionError: Ticket already closed
        """
        ticket = await self._load_for_mutation(ticket_id)
        ensure_can_mutate(principal, ticket, MutationIntent.MARK_DUPLICATE)

        if duplicate_of_id == ticket_id:
            raise ValidationError(
                message="A ticket cannot be a duplicate of itself",
                ticket_id=ticket_id,
            )

        original = await self.ticket_dao.get_by_id(duplicate_of_id, visible_tickets_clause(principal))
        if original is None:
            raise TicketNotFoundError(
                message=f"Related ticket #{duplicate_of_id} not found",
                ticket_id=duplicate_of_id,
            )

        TicketStateMachine.assert_duplicate(ticket)

        async with self._atomic("mark_duplicate", ticket_id):
            previous = TicketStateMachine.apply_status(ticket, TicketStatus.CLOSED)
            await self.ticket_dao.save(ticket)
            await self.history.record_duplicated(
                ticket.id, principal.profile_id, previous, duplicate_of_id
            )
            await self.comments.add(
                ticket.id,
                principal.profile_id,
                DUPLICATE_COMMENT.format(ticket_id=duplicate_of_id),
            )

        logger.info(
            f"Ticket {ticket.id} marked duplicate of {duplicate_of_id} "
            f"by profile {principal.profile_id}"
        )

        actor = await self._actor_name(principal)
        self._notify(
            NotificationEventType.TICKET_DUPLICATED,
            ticket,
            actor,
            message=f"Duplicate of ticket #{duplicate_of_id}",
        )

        return await self._reload(ticket.id)

    # =========================================================================
    # Field changes
    # =========================================================================

    async def assign(
        self,
        principal: Principal,
        ticket_id: int,
        assignee_id: Optional[int],
    ) -> Ticket:
        """
        Assign a ticket to a staff profile, or unassign it with None.

        Raises:
            TicketNotFoundError: Ticket does not exist
            AuthorizationError: Principal is not admin/owner
            ValidationError: Assignee missing, inactive or not staff
        """
        ticket = await self._load_for_mutation(ticket_id)
        ensure_can_mutate(principal, ticket, MutationIntent.ASSIGN)

        assignee = None
        if assignee_id is not None:
            assignee = await self.profile_dao.get_by_id(assignee_id)
            if assignee is None or not assignee.is_active or assignee.role not in STAFF_ROLES:
                raise ValidationError(
                    message="Assignee must be an active employee, admin or owner",
                    ticket_id=ticket_id,
                    assignee_id=assignee_id,
                )

        if ticket.assignee_id == assignee_id:
            return await self._reload(ticket.id)

        async with self._atomic("assign", ticket_id):
            previous = ticket.assignee_id
            ticket.assignee_id = assignee_id
            ticket.updated_at = datetime.utcnow()
            await self.ticket_dao.save(ticket)
            await self.history.record_assignment(
                ticket.id, principal.profile_id, previous, assignee_id
            )

        logger.info(
            f"Ticket {ticket.id} assigned {previous} -> {assignee_id} "
            f"by profile {principal.profile_id}"
        )

        actor = await self._actor_name(principal)
        if assignee is not None:
            self._notify(
                NotificationEventType.TICKET_ASSIGNED,
                ticket,
                actor,
                message=f"This ticket was assigned to {assignee.display_name}.",
                explicit_recipients=(assignee.email,),
            )
        else:
            self._notify(
                NotificationEventType.TICKET_ASSIGNED,
                ticket,
                actor,
                message="This ticket is no longer assigned.",
            )

        return await self._reload(ticket.id)

    async def set_priority(
        self,
        principal: Principal,
        ticket_id: int,
        priority: TicketPriority,
    ) -> Ticket:
        """
        Change a ticket's priority. Setting the current value is a no-op.

        Raises:
            TicketNotFoundError, AuthorizationError
        """
        ticket = await self._load_for_mutation(ticket_id)
        ensure_can_mutate(principal, ticket, MutationIntent.SET_PRIORITY)

        if ticket.priority == priority:
            return await self._reload(ticket.id)

        async with self._atomic("set_priority", ticket_id):
            previous = ticket.priority
            ticket.priority = priority
            ticket.updated_at = datetime.utcnow()
            await self.ticket_dao.save(ticket)
            await self.history.record_priority_change(
                ticket.id, principal.profile_id, previous, priority
            )

        logger.info(
            f"Ticket {ticket.id} priority {previous.value} -> {priority.value} "
            f"by profile {principal.profile_id}"
        )

        actor = await self._actor_name(principal)
        self._notify(
            NotificationEventType.TICKET_UPDATED,
            ticket,
            actor,
            message=f"Priority changed from {previous.value} to {priority.value}",
        )

        return await self._reload(ticket.id)

    async def set_due_date(
        self,
        principal: Principal,
        ticket_id: int,
        due_date: Optional[datetime],
    ) -> Ticket:
        """
        Set or clear a ticket's due date. Setting the current value is a no-op.

        Raises:
            TicketNotFoundError, AuthorizationError
        """
        ticket = await self._load_for_mutation(ticket_id)
        ensure_can_mutate(principal, ticket, MutationIntent.SET_DUE_DATE)

        due_date = _naive_utc(due_date)
        if ticket.due_date == due_date:
            return await self._reload(ticket.id)

        async with self._atomic("set_due_date", ticket_id):
            previous = ticket.due_date
            ticket.due_date = due_date
            ticket.updated_at = datetime.utcnow()
            await self.ticket_dao.save(ticket)
            await self.history.record_due_date_change(
                ticket.id, principal.profile_id, previous, due_date
            )

        logger.info(f"Ticket {ticket.id} due date set to {due_date} by profile {principal.profile_id}")

        actor = await self._actor_name(principal)
        if due_date is None:
            message = "Due date cleared"
        else:
            message = f"Due date set to {due_date.isoformat()}"
        self._notify(NotificationEventType.TICKET_UPDATED, ticket, actor, message=message)

        return await self._reload(ticket.id)

    # =========================================================================
    # Bulk updates
    # =========================================================================

    async def bulk_update(
        self,
        principal: Principal,
        ticket_ids: List[int],
        status: Optional[TicketStatus] = None,
        priority: Optional[TicketPriority] = None,
        assignee_id: Optional[int] = None,
    ) -> List[BulkUpdateOutcome]:
        """
        Apply the same changes to many tickets.

        WHAT: For each ticket, in order: assign, set priority, change
        status. Each change is the regular single-ticket operation, so it
        is authorized, validated, recorded in history and notified exactly
        as if called on its own. A ticket already in the target status is
        left alone instead of failing.

        WHY: A rejection only stops the ticket it belongs to. Changes that
        were committed for that ticket before the rejection stay, and are
        listed in the outcome's applied fields.

        Args:
            principal: Acting principal
            ticket_ids: Tickets to update; duplicates are processed once
            status: Target status
            priority: Target priority
            assignee_id: Profile to assign

        Returns:
            One outcome per distinct ticket id, in request order

        Raises:
            ValidationError: Nothing to change, or too many tickets
        """
        if status is None and priority is None and assignee_id is None:
            raise ValidationError(message="Bulk update needs at least one field to change")

        ticket_ids = list(dict.fromkeys(ticket_ids))
        if len(ticket_ids) > settings.BULK_UPDATE_MAX_TICKETS:
            raise ValidationError(
                message=f"Bulk update is limited to {settings.BULK_UPDATE_MAX_TICKETS} tickets",
                ticket_count=len(ticket_ids),
            )

        outcomes = []
        for ticket_id in ticket_ids:
            outcome = BulkUpdateOutcome(ticket_id=ticket_id)
            try:
                if assignee_id is not None:
                    await self.assign(principal, ticket_id, assignee_id)
                    outcome.applied.append("assignee_id")

                if priority is not None:
                    await self.set_priority(principal, ticket_id, priority)
                    outcome.applied.append("priority")

                if status is not None:
                    ticket = await self._load_for_mutation(ticket_id)
                    ensure_can_mutate(principal, ticket, MutationIntent.CHANGE_STATUS)
                    if ticket.status != status:
                        if ticket.status == TicketStatus.CLOSED and status == TicketStatus.OPEN:
                            await self.reopen(principal, ticket_id)
                        else:
                            await self.change_status(principal, ticket_id, status)
                    outcome.applied.append("status")
            except AppException as e:
                logger.warning(
                    f"Bulk update stopped for ticket {ticket_id} after {outcome.applied}: "
                    f"{e.__class__.__name__}: {e.message}"
                )
                outcome.error = e
            outcomes.append(outcome)

        failed = sum(1 for o in outcomes if not o.ok)
        logger.info(
            f"Bulk update by profile {principal.profile_id}: "
            f"{len(outcomes) - failed} tickets updated, {failed} failed"
        )
        return outcomes

    # =========================================================================
    # Comments
    # =========================================================================

    async def add_comment(
        self,
        principal: Principal,
        ticket_id: int,
        content: str,
        is_private: bool = False,
    ) -> TicketComment:
        """
        Append a comment to a ticket.

        WHAT: Public comments notify; private staff notes do not.

        Raises:
            TicketNotFoundError: Ticket does not exist
            AuthorizationError: Ticket not visible, or private note by non-staff
            ValidationError: Blank content
        """
        ticket = await self._load_for_mutation(ticket_id)
        intent = MutationIntent.PRIVATE_COMMENT if is_private else MutationIntent.COMMENT
        ensure_can_mutate(principal, ticket, intent)

        if content is None or not content.strip():
            raise ValidationError(message="Comment content must not be empty", ticket_id=ticket_id)

        async with self._atomic("add_comment", ticket_id):
            comment = await self.comments.add(
                ticket.id, principal.profile_id, content, is_private=is_private
            )

        await self.session.refresh(comment, ["author"])

        logger.info(
            f"Comment {comment.id} ({'private' if is_private else 'public'}) added to "
            f"ticket {ticket.id} by profile {principal.profile_id}"
        )

        if not is_private:
            self._notify(
                NotificationEventType.COMMENT_ADDED,
                ticket,
                comment.author.display_name,
                message=comment.content,
            )

        return comment

    async def list_comments(
        self,
        principal: Principal,
        ticket_id: int,
        include_private: bool = True,
    ) -> List[TicketComment]:
        """Comments the principal may read, oldest first."""
        return await self.comments.list_visible_for(principal, ticket_id, include_private)

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_ticket(self, principal: Principal, ticket_id: int) -> Optional[Ticket]:
        """
        Get a ticket if the principal can see it.

        Returns:
            Ticket, or None when missing or not visible
        """
        return await self.ticket_dao.get_by_id_with_relations(
            ticket_id, visible_tickets_clause(principal)
        )

    async def list_tickets(
        self,
        principal: Principal,
        skip: int = 0,
        limit: int = 20,
        status: Optional[TicketStatus] = None,
        priority: Optional[TicketPriority] = None,
        category_id: Optional[int] = None,
        search: Optional[str] = None,
        assigned_to_me: bool = False,
    ) -> Tuple[List[Ticket], int]:
        """
        List visible tickets, newest first.

        Returns:
            Tuple of (tickets, total count)
        """
        return await self.ticket_dao.list(
            visible_tickets_clause(principal),
            skip=skip,
            limit=limit,
            status=status,
            priority=priority,
            category_id=category_id,
            assignee_id=principal.profile_id if assigned_to_me else None,
            search=search,
        )

    async def list_history(self, principal: Principal, ticket_id: int) -> List[TicketHistory]:
        """History newest first; empty when the ticket is not visible."""
        ticket = await self.ticket_dao.get_by_id(ticket_id, visible_tickets_clause(principal))
        if ticket is None:
            return []
        return await self.history.list_for(ticket_id)

    async def ticket_stats(self, principal: Principal) -> dict:
        """Dashboard counts over the tickets the principal can see."""
        return await self.ticket_dao.get_stats(visible_tickets_clause(principal))

    # =========================================================================
    # Attachments
    # =========================================================================

    async def list_attachments(
        self,
        principal: Principal,
        ticket_id: int,
    ) -> List[TicketAttachment]:
        """Attachments of a visible ticket, oldest first."""
        ticket = await self.ticket_dao.get_by_id(ticket_id, visible_tickets_clause(principal))
        if ticket is None:
            return []
        return await self.attachment_dao.list_for_ticket(ticket_id)

    async def attach(
        self,
        principal: Principal,
        ticket_id: int,
        blob: UploadedBlob,
    ) -> TicketAttachment:
        """
        Upload a file to a ticket.

        Raises:
            TicketNotFoundError, AuthorizationError, ValidationError, StorageError
        """
        ticket = await self._load_for_mutation(ticket_id)
        ensure_can_mutate(principal, ticket, MutationIntent.ATTACH)
        return await self.binder.bind(ticket.id, principal.profile_id, blob)

    async def detach(self, principal: Principal, attachment_id: int) -> bool:
        """
        Delete an attachment and its blob.

        Raises:
            AttachmentNotFoundError: Attachment does not exist
            AuthorizationError: Not a staff mutator or the uploader
            StorageError: Blob deletion failed; the attachment is kept
        """
        attachment = await self.attachment_dao.get_by_id(attachment_id)
        if attachment is None:
            raise AttachmentNotFoundError(attachment_id=attachment_id)

        ticket = await self._load_for_mutation(attachment.ticket_id)
        ensure_can_mutate(principal, ticket, MutationIntent.DETACH, attachment)
        return await self.binder.unbind(attachment_id)

    async def get_attachment_url(
        self,
        principal: Principal,
        attachment_id: int,
        ttl_seconds: Optional[int] = None,
    ) -> Optional[str]:
        """
        Issue a fresh signed URL for an attachment.

        Returns:
            URL, or None when the attachment is missing, not visible, or
            the store could not sign
        """
        attachment = await self.attachment_dao.get_by_id(attachment_id)
        if attachment is None:
            return None

        ticket = await self.ticket_dao.get_by_id(attachment.ticket_id)
        if ticket is None or not can_see_ticket(principal, ticket):
            return None

        return await self.binder.url_for(attachment, ttl_seconds)
