"""
Access Control Resolver.

WHAT: The single place that decides which principal may see or change
which ticket-related record.

WHY: Every read and write path asks this module instead of re-implementing
role checks at each call site. The rules:

Visibility (reads):
- user: tickets they submitted
- employee: tickets they submitted or are assigned to
- admin / owner: every ticket

Mutations (writes):
- status, reopen, duplicate, priority, due date: employee/admin/owner,
  and an employee only on tickets they can currently see
- assignment: admin/owner only
- comments and uploads: anyone who can see the ticket
- private comments: staff who can see the ticket
- deleting an attachment: a staff mutator, or its uploader

Reads filter silently and never raise; writes raise AuthorizationError.
The asymmetry keeps error messages from revealing that a record exists.

HOW: visible_tickets_clause() returns a SQLAlchemy predicate that DAOs
apply inside the query; the can_* functions evaluate the same rule on
loaded rows.
"""

import enum
import logging
from typing import Optional

from sqlalchemy import or_, true
from sqlalchemy.sql.elements import ColumnElement

from helpdesk.core.exceptions import AuthorizationError
from helpdesk.core.principal import Principal
from helpdesk.models.profile import ProfileRole
from helpdesk.models.ticket import Ticket, TicketComment, TicketAttachment

logger = logging.getLogger(__name__)


class MutationIntent(str, enum.Enum):
    """What a principal is trying to do to a ticket."""

    CHANGE_STATUS = "change_status"
    REOPEN = "reopen"
    MARK_DUPLICATE = "mark_duplicate"
    SET_PRIORITY = "set_priority"
    SET_DUE_DATE = "set_due_date"
    ASSIGN = "assign"
    COMMENT = "comment"
    PRIVATE_COMMENT = "private_comment"
    ATTACH = "attach"
    DETACH = "detach"


# Intents that triage a ticket and need a staff role
TRIAGE_INTENTS = frozenset({
    MutationIntent.CHANGE_STATUS,
    MutationIntent.REOPEN,
    MutationIntent.MARK_DUPLICATE,
    MutationIntent.SET_PRIORITY,
    MutationIntent.SET_DUE_DATE,
})


# ============================================================================
# Read path
# ============================================================================


def visible_tickets_clause(principal: Principal) -> ColumnElement[bool]:
    """
    Build the visibility predicate over Ticket for a principal.

    Args:
        principal: Acting principal

    Returns:
        SQLAlchemy boolean expression to apply in a WHERE clause
    """
    if principal.is_privileged:
        return true()

    if principal.role == ProfileRole.EMPLOYEE:
        return or_(
            Ticket.submitter_id == principal.profile_id,
            Ticket.assignee_id == principal.profile_id,
        )

    return Ticket.submitter_id == principal.profile_id


def can_see_ticket(principal: Principal, ticket: Ticket) -> bool:
    """Evaluate the visibility rule against a loaded ticket."""
    if principal.is_privileged:
        return True

    if principal.role == ProfileRole.EMPLOYEE:
        return principal.profile_id in (ticket.submitter_id, ticket.assignee_id)

    return ticket.submitter_id == principal.profile_id


def can_see_comment(principal: Principal, comment: TicketComment) -> bool:
    """
    Decide whether a comment may be shown.

    Assumes the caller already checked that the parent ticket is visible.
    Private notes are staff-only.
    """
    if comment.is_private:
        return principal.is_staff
    return True


# ============================================================================
# Write path
# ============================================================================


def can_mutate(
    principal: Principal,
    ticket: Ticket,
    intent: MutationIntent,
    attachment: Optional[TicketAttachment] = None,
) -> bool:
    """
    Decide whether a principal may perform a mutation on a ticket.

    Args:
        principal: Acting principal
        ticket: Target ticket
        intent: Requested mutation
        attachment: Target attachment, for DETACH

    Returns:
        True if allowed
    """
    visible = can_see_ticket(principal, ticket)

    if intent in TRIAGE_INTENTS:
        return principal.is_staff and visible

    if intent == MutationIntent.ASSIGN:
        return principal.is_privileged

    if intent in (MutationIntent.COMMENT, MutationIntent.ATTACH):
        return visible

    if intent == MutationIntent.PRIVATE_COMMENT:
        return principal.is_staff and visible

    if intent == MutationIntent.DETACH:
        if principal.is_staff and visible:
            return True
        return (
            visible
            and attachment is not None
            and attachment.uploader_id == principal.profile_id
        )

    return False


def can_create_ticket(principal: Principal) -> bool:
    """Any authenticated principal may open a ticket as its submitter."""
    return principal.role in tuple(ProfileRole)


def ensure_can_create_ticket(principal: Principal) -> None:
    """
    Reject ticket creation for a principal without a known role.

    Raises:
        AuthorizationError: If can_create_ticket() says no
    """
    if can_create_ticket(principal):
        return

    logger.warning(f"Denied ticket creation for profile {principal.profile_id}")
    raise AuthorizationError(
        message="Your role does not allow opening tickets",
        profile_id=principal.profile_id,
    )


def ensure_can_mutate(
    principal: Principal,
    ticket: Ticket,
    intent: MutationIntent,
    attachment: Optional[TicketAttachment] = None,
) -> None:
    """
    Reject a mutation the principal is not allowed to perform.

    Raises:
        AuthorizationError: If can_mutate() says no
    """
    if can_mutate(principal, ticket, intent, attachment):
        return

    logger.warning(
        f"Denied {intent.value} on ticket {ticket.id} for profile "
        f"{principal.profile_id} ({principal.role.value})"
    )
    raise AuthorizationError(
        message=f"Your role does not allow '{intent.value.replace('_', ' ')}' on this ticket",
        ticket_id=ticket.id,
        intent=intent.value,
        role=principal.role.value,
    )
