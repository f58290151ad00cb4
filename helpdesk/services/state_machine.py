"""
Ticket State Machine.

WHAT: Legal status transitions and their side effects on the ticket row.

WHY: Status changes must follow a fixed graph:

    open ⇄ waiting
    open/waiting → closed          (generic status change; sets closed_at)
    closed → open                  (reopen only; clears closed_at)
    open/waiting → closed          (duplicate marking)

A request to move to the status the ticket already has is rejected too.
Rejections happen before anything is written, so an illegal transition
never leaves a history entry behind.

HOW: Pure functions over a loaded Ticket. Persistence and history are
handled by the ticket service in the same transaction.
"""

from datetime import datetime
from typing import Dict, FrozenSet, Optional

from helpdesk.core.exceptions import InvalidTransitionError
from helpdesk.models.ticket import Ticket, TicketStatus


# Targets reachable through a generic status change
VALID_STATUS_TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    TicketStatus.OPEN: frozenset({TicketStatus.WAITING, TicketStatus.CLOSED}),
    TicketStatus.WAITING: frozenset({TicketStatus.OPEN, TicketStatus.CLOSED}),
    # WHY: Leaving CLOSED is a reopen, which has its own history action
    TicketStatus.CLOSED: frozenset(),
}

# States a ticket can be marked duplicate from
DUPLICABLE_STATES = frozenset({TicketStatus.OPEN, TicketStatus.WAITING})


class TicketStateMachine:
    """
    Validates and applies ticket lifecycle transitions.

    Each assert_* method raises InvalidTransitionError; each apply_*
    method mutates the ticket in place and returns the previous status.
    """

    @staticmethod
    def can_change_status(current: TicketStatus, target: TicketStatus) -> bool:
        return target in VALID_STATUS_TRANSITIONS.get(current, frozenset())

    @classmethod
    def assert_status_change(cls, ticket: Ticket, target: TicketStatus) -> None:
        """
        Validate a generic status change.

        Raises:
            InvalidTransitionError: If target equals the current status or
                is not reachable from it
        """
        if ticket.status == target:
            raise InvalidTransitionError(
                message=f"Ticket is already {target.value}",
                ticket_id=ticket.id,
                current_status=ticket.status.value,
                requested_status=target.value,
            )

        if not cls.can_change_status(ticket.status, target):
            allowed = sorted(s.value for s in VALID_STATUS_TRANSITIONS.get(ticket.status, ()))
            message = f"Cannot change status from {ticket.status.value} to {target.value}"
            if ticket.status == TicketStatus.CLOSED:
                message += "; reopen the ticket instead"
            raise InvalidTransitionError(
                message=message,
                ticket_id=ticket.id,
                current_status=ticket.status.value,
                requested_status=target.value,
                valid_transitions=allowed,
            )

    @staticmethod
    def assert_reopen(ticket: Ticket) -> None:
        """
        Validate a reopen.

        Raises:
            InvalidTransitionError: If the ticket is not closed
        """
        if ticket.status != TicketStatus.CLOSED:
            raise InvalidTransitionError(
                message="Only closed tickets can be reopened",
                ticket_id=ticket.id,
                current_status=ticket.status.value,
            )

    @staticmethod
    def assert_duplicate(ticket: Ticket) -> None:
        """
        Validate duplicate marking.

        Raises:
            InvalidTransitionError: If the ticket is already closed
        """
        if ticket.status not in DUPLICABLE_STATES:
            raise InvalidTransitionError(
                message="Closed tickets cannot be marked as duplicate",
                ticket_id=ticket.id,
                current_status=ticket.status.value,
            )

    @staticmethod
    def apply_status(
        ticket: Ticket,
        target: TicketStatus,
        now: Optional[datetime] = None,
    ) -> TicketStatus:
        """
        Move a ticket to a new status, keeping closed_at consistent.

        closed_at is set when entering CLOSED and cleared when leaving it.

        Returns:
            The previous status
        """
        now = now or datetime.utcnow()
        previous = ticket.status

        ticket.status = target
        ticket.updated_at = now

        if target == TicketStatus.CLOSED:
            ticket.closed_at = now
        else:
            ticket.closed_at = None

        return previous

    @classmethod
    def change_status(
        cls,
        ticket: Ticket,
        target: TicketStatus,
        now: Optional[datetime] = None,
    ) -> TicketStatus:
        """Validate and apply a generic status change."""
        cls.assert_status_change(ticket, target)
        return cls.apply_status(ticket, target, now)

    @classmethod
    def reopen(cls, ticket: Ticket, now: Optional[datetime] = None) -> TicketStatus:
        """Validate and apply a reopen (closed → open)."""
        cls.assert_reopen(ticket)
        return cls.apply_status(ticket, TicketStatus.OPEN, now)

    @classmethod
    def mark_duplicate(cls, ticket: Ticket, now: Optional[datetime] = None) -> TicketStatus:
        """Validate and apply duplicate marking (→ closed)."""
        cls.assert_duplicate(ticket)
        return cls.apply_status(ticket, TicketStatus.CLOSED, now)
