"""
Unit tests for the Access Control Resolver.

WHAT: Visibility and mutation rules per role.

WHY: Every read and write path relies on these decisions. Verifies that:
1. Users only see their own tickets
2. Employees see tickets they submitted or are assigned to
3. Admins and owners see everything
4. Triage needs a staff role and visibility; assignment needs admin/owner
5. Private notes are staff-only
6. Denials raise AuthorizationError with context

HOW: Pure functions over transient model instances; no database needed.
"""

import pytest

from helpdesk.core.exceptions import AuthorizationError
from helpdesk.core.principal import Principal
from helpdesk.models.profile import ProfileRole
from helpdesk.models.ticket import Ticket, TicketComment, TicketAttachment
from helpdesk.services.access_control import (
    MutationIntent,
    TRIAGE_INTENTS,
    can_see_ticket,
    can_see_comment,
    can_mutate,
    can_create_ticket,
    ensure_can_create_ticket,
    ensure_can_mutate,
)


SUBMITTER_ID = 1
ASSIGNEE_ID = 2
OTHER_ID = 3


@pytest.fixture
def ticket() -> Ticket:
    return Ticket(id=10, submitter_id=SUBMITTER_ID, assignee_id=ASSIGNEE_ID, title="t", description="d")


def _principal(profile_id: int, role: ProfileRole) -> Principal:
    return Principal(profile_id=profile_id, role=role)


class TestTicketVisibility:
    """Tests for can_see_ticket."""

    def test_user_sees_own_ticket(self, ticket):
        assert can_see_ticket(_principal(SUBMITTER_ID, ProfileRole.USER), ticket)

    def test_user_does_not_see_others(self, ticket):
        assert not can_see_ticket(_principal(OTHER_ID, ProfileRole.USER), ticket)

    def test_user_assignee_field_is_ignored(self, ticket):
        """A user-role assignee (legacy data) still only sees own submissions."""
        assert not can_see_ticket(_principal(ASSIGNEE_ID, ProfileRole.USER), ticket)

    def test_employee_sees_assigned_ticket(self, ticket):
        assert can_see_ticket(_principal(ASSIGNEE_ID, ProfileRole.EMPLOYEE), ticket)

    def test_employee_sees_submitted_ticket(self, ticket):
        assert can_see_ticket(_principal(SUBMITTER_ID, ProfileRole.EMPLOYEE), ticket)

    def test_employee_does_not_see_unrelated(self, ticket):
        assert not can_see_ticket(_principal(OTHER_ID, ProfileRole.EMPLOYEE), ticket)

    @pytest.mark.parametrize("role", [ProfileRole.ADMIN, ProfileRole.OWNER])
    def test_privileged_sees_everything(self, ticket, role):
        assert can_see_ticket(_principal(OTHER_ID, role), ticket)


class TestCommentVisibility:
    """Private notes are staff-only."""

    def test_public_comment_visible_to_user(self):
        comment = TicketComment(is_private=False)
        assert can_see_comment(_principal(SUBMITTER_ID, ProfileRole.USER), comment)

    def test_private_comment_hidden_from_user(self):
        comment = TicketComment(is_private=True)
        assert not can_see_comment(_principal(SUBMITTER_ID, ProfileRole.USER), comment)

    @pytest.mark.parametrize("role", [ProfileRole.EMPLOYEE, ProfileRole.ADMIN, ProfileRole.OWNER])
    def test_private_comment_visible_to_staff(self, role):
        comment = TicketComment(is_private=True)
        assert can_see_comment(_principal(ASSIGNEE_ID, role), comment)


class TestMutations:
    """Tests for can_mutate."""

    @pytest.mark.parametrize("intent", sorted(TRIAGE_INTENTS, key=lambda i: i.value))
    def test_user_cannot_triage_own_ticket(self, ticket, intent):
        assert not can_mutate(_principal(SUBMITTER_ID, ProfileRole.USER), ticket, intent)

    @pytest.mark.parametrize("intent", sorted(TRIAGE_INTENTS, key=lambda i: i.value))
    def test_assigned_employee_can_triage(self, ticket, intent):
        assert can_mutate(_principal(ASSIGNEE_ID, ProfileRole.EMPLOYEE), ticket, intent)

    def test_unrelated_employee_cannot_triage(self, ticket):
        principal = _principal(OTHER_ID, ProfileRole.EMPLOYEE)
        assert not can_mutate(principal, ticket, MutationIntent.CHANGE_STATUS)

    def test_only_privileged_can_assign(self, ticket):
        assert not can_mutate(_principal(ASSIGNEE_ID, ProfileRole.EMPLOYEE), ticket, MutationIntent.ASSIGN)
        assert can_mutate(_principal(OTHER_ID, ProfileRole.ADMIN), ticket, MutationIntent.ASSIGN)
        assert can_mutate(_principal(OTHER_ID, ProfileRole.OWNER), ticket, MutationIntent.ASSIGN)

    def test_submitter_can_comment_and_attach(self, ticket):
        principal = _principal(SUBMITTER_ID, ProfileRole.USER)
        assert can_mutate(principal, ticket, MutationIntent.COMMENT)
        assert can_mutate(principal, ticket, MutationIntent.ATTACH)

    def test_stranger_cannot_comment(self, ticket):
        assert not can_mutate(_principal(OTHER_ID, ProfileRole.USER), ticket, MutationIntent.COMMENT)

    def test_user_cannot_write_private_note(self, ticket):
        principal = _principal(SUBMITTER_ID, ProfileRole.USER)
        assert not can_mutate(principal, ticket, MutationIntent.PRIVATE_COMMENT)

    def test_employee_can_write_private_note(self, ticket):
        principal = _principal(ASSIGNEE_ID, ProfileRole.EMPLOYEE)
        assert can_mutate(principal, ticket, MutationIntent.PRIVATE_COMMENT)

    def test_uploader_can_detach_own_attachment(self, ticket):
        attachment = TicketAttachment(uploader_id=SUBMITTER_ID, ticket_id=ticket.id)
        principal = _principal(SUBMITTER_ID, ProfileRole.USER)
        assert can_mutate(principal, ticket, MutationIntent.DETACH, attachment)

    def test_user_cannot_detach_someone_elses_attachment(self, ticket):
        attachment = TicketAttachment(uploader_id=ASSIGNEE_ID, ticket_id=ticket.id)
        principal = _principal(SUBMITTER_ID, ProfileRole.USER)
        assert not can_mutate(principal, ticket, MutationIntent.DETACH, attachment)

    def test_staff_can_detach_any_attachment_on_visible_ticket(self, ticket):
        attachment = TicketAttachment(uploader_id=SUBMITTER_ID, ticket_id=ticket.id)
        principal = _principal(ASSIGNEE_ID, ProfileRole.EMPLOYEE)
        assert can_mutate(principal, ticket, MutationIntent.DETACH, attachment)

    @pytest.mark.parametrize("role", list(ProfileRole))
    def test_any_role_can_create_tickets(self, role):
        assert can_create_ticket(_principal(OTHER_ID, role))


class TestEnsureCanMutate:
    """Denials are explicit errors."""

    def test_allowed_returns_none(self, ticket):
        principal = _principal(OTHER_ID, ProfileRole.ADMIN)
        assert ensure_can_mutate(principal, ticket, MutationIntent.ASSIGN) is None

    def test_denied_raises_with_context(self, ticket):
        principal = _principal(SUBMITTER_ID, ProfileRole.USER)

        with pytest.raises(AuthorizationError) as exc_info:
            ensure_can_mutate(principal, ticket, MutationIntent.CHANGE_STATUS)

        assert exc_info.value.status_code == 403
        assert exc_info.value.context == {
            "ticket_id": 10,
            "intent": "change_status",
            "role": "user",
        }


class TestEnsureCanCreateTicket:

    def test_known_role_allowed(self):
        assert ensure_can_create_ticket(_principal(OTHER_ID, ProfileRole.USER)) is None

    def test_unknown_role_rejected(self):
        principal = Principal(profile_id=OTHER_ID, role="guest")

        with pytest.raises(AuthorizationError) as exc_info:
            ensure_can_create_ticket(principal)

        assert exc_info.value.context == {"profile_id": OTHER_ID}
