"""
Unit tests for the ticket state machine.

WHAT: Legal transitions and closed_at bookkeeping.

WHY: An illegal transition must be rejected before anything is written.
"""

from datetime import datetime

import pytest

from helpdesk.core.exceptions import InvalidTransitionError
from helpdesk.models.ticket import Ticket, TicketStatus
from helpdesk.services.state_machine import TicketStateMachine, VALID_STATUS_TRANSITIONS


NOW = datetime(2026, 3, 1, 12, 0, 0)


def _ticket(status: TicketStatus) -> Ticket:
    return Ticket(
        id=1,
        title="t",
        description="d",
        submitter_id=1,
        status=status,
        closed_at=NOW if status == TicketStatus.CLOSED else None,
    )


class TestTransitionTable:

    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            (TicketStatus.OPEN, TicketStatus.WAITING, True),
            (TicketStatus.OPEN, TicketStatus.CLOSED, True),
            (TicketStatus.WAITING, TicketStatus.OPEN, True),
            (TicketStatus.WAITING, TicketStatus.CLOSED, True),
            (TicketStatus.CLOSED, TicketStatus.OPEN, False),
            (TicketStatus.CLOSED, TicketStatus.WAITING, False),
            (TicketStatus.OPEN, TicketStatus.OPEN, False),
        ],
    )
    def test_can_change_status(self, current, target, allowed):
        assert TicketStateMachine.can_change_status(current, target) is allowed

    def test_closed_is_terminal_for_generic_changes(self):
        assert VALID_STATUS_TRANSITIONS[TicketStatus.CLOSED] == frozenset()


class TestChangeStatus:

    def test_close_sets_closed_at(self):
        ticket = _ticket(TicketStatus.OPEN)

        previous = TicketStateMachine.change_status(ticket, TicketStatus.CLOSED, now=NOW)

        assert previous == TicketStatus.OPEN
        assert ticket.status == TicketStatus.CLOSED
        assert ticket.closed_at == NOW
        assert ticket.updated_at == NOW

    def test_waiting_keeps_closed_at_empty(self):
        ticket = _ticket(TicketStatus.OPEN)

        TicketStateMachine.change_status(ticket, TicketStatus.WAITING, now=NOW)

        assert ticket.status == TicketStatus.WAITING
        assert ticket.closed_at is None

    def test_same_status_rejected(self):
        ticket = _ticket(TicketStatus.WAITING)

        with pytest.raises(InvalidTransitionError, match="already waiting"):
            TicketStateMachine.change_status(ticket, TicketStatus.WAITING)

    def test_leaving_closed_points_to_reopen(self):
        ticket = _ticket(TicketStatus.CLOSED)

        with pytest.raises(InvalidTransitionError, match="reopen"):
            TicketStateMachine.change_status(ticket, TicketStatus.OPEN)

        # Rejected transitions leave the ticket untouched
        assert ticket.status == TicketStatus.CLOSED
        assert ticket.closed_at == NOW


class TestReopen:

    def test_reopen_clears_closed_at(self):
        ticket = _ticket(TicketStatus.CLOSED)

        previous = TicketStateMachine.reopen(ticket, now=NOW)

        assert previous == TicketStatus.CLOSED
        assert ticket.status == TicketStatus.OPEN
        assert ticket.closed_at is None

    @pytest.mark.parametrize("status", [TicketStatus.OPEN, TicketStatus.WAITING])
    def test_reopen_requires_closed(self, status):
        with pytest.raises(InvalidTransitionError, match="Only closed tickets"):
            TicketStateMachine.reopen(_ticket(status))


class TestMarkDuplicate:

    @pytest.mark.parametrize("status", [TicketStatus.OPEN, TicketStatus.WAITING])
    def test_duplicate_closes_ticket(self, status):
        ticket = _ticket(status)

        previous = TicketStateMachine.mark_duplicate(ticket, now=NOW)

        assert previous == status
        assert ticket.status == TicketStatus.CLOSED
        assert ticket.closed_at == NOW

    def test_closed_ticket_cannot_be_marked_duplicate(self):
        with pytest.raises(InvalidTransitionError):
            TicketStateMachine.mark_duplicate(_ticket(TicketStatus.CLOSED))
