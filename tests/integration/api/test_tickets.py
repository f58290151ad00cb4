"""
Integration tests for the ticket API.

WHAT: End-to-end HTTP tests for the ticket lifecycle, comments, history
and attachments.

WHY: Verifies the full stack (router, service, database, blob store and
notification dispatcher) behaves correctly together:
1. Authentication is required everywhere except signed blob downloads
2. Invisible tickets look missing (404), forbidden mutations answer 403
3. Illegal transitions answer 409 and change nothing
4. Committed mutations notify the recipients the rules select
"""

import httpx
import pytest
from httpx import AsyncClient

from helpdesk.core.config import settings
from helpdesk.models.notification_rule import NotificationEventType, RecipientSelector
from helpdesk.models.ticket import TicketPriority, TicketStatus
from helpdesk.services.email import (
    EmailMessage,
    EmailProvider,
    EmailResult,
    MockEmailProvider,
    set_delivery_channel,
)
from tests.factories import (
    CategoryFactory,
    NotificationRuleFactory,
    ProfileFactory,
    TicketFactory,
    auth_headers,
)


API = "/api/tickets"


async def _create(client: AsyncClient, profile, **overrides) -> dict:
    payload = {"title": "Email not syncing", "description": "Outlook stuck since Monday"}
    payload.update(overrides)
    response = await client.post(API, json=payload, headers=auth_headers(profile))
    assert response.status_code == 201, response.text
    return response.json()


def _sent_to(event_type: NotificationEventType) -> list:
    return [m.to_email for m in MockEmailProvider.sent_emails if m.event_type == event_type]


class UnreachableChannel(EmailProvider):
    """Delivery channel whose mail API cannot be reached."""

    def is_configured(self) -> bool:
        return True

    async def send(self, message: EmailMessage) -> EmailResult:
        raise httpx.ConnectError("connection refused")


class TestAuthentication:

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get(API)

        assert response.status_code == 401
        assert response.json()["error"] == "AuthenticationError"

    @pytest.mark.asyncio
    async def test_garbage_token(self, client):
        response = await client.get(API, headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_inactive_profile(self, client, db_session):
        profile = await ProfileFactory.create_user(db_session, is_active=False)

        response = await client.get(API, headers=auth_headers(profile))

        assert response.status_code == 401


class TestCreateAndRead:

    @pytest.mark.asyncio
    async def test_create_ticket(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        category = await CategoryFactory.create(db_session, name="Email")

        body = await _create(client, user, priority="high", category_id=category.id)

        assert body["status"] == "open"
        assert body["priority"] == "high"
        assert body["submitter_id"] == user.id
        assert body["category"]["name"] == "Email"
        assert body["assignee_id"] is None

        history = await client.get(f"{API}/{body['id']}/history", headers=auth_headers(user))
        assert [e["action"] for e in history.json()] == ["created"]

    @pytest.mark.asyncio
    async def test_blank_title_rejected(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)

        response = await client.post(
            API, json={"title": "   ", "description": "x"}, headers=auth_headers(user)
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_category(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)

        response = await client.post(
            API,
            json={"title": "t", "description": "d", "category_id": 999},
            headers=auth_headers(user),
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invisible_ticket_is_404(self, client, db_session):
        owner = await ProfileFactory.create_user(db_session)
        other = await ProfileFactory.create_user(db_session)
        ticket = await TicketFactory.create(db_session, submitter=owner)

        response = await client.get(f"{API}/{ticket.id}", headers=auth_headers(other))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_list_is_role_scoped(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        other = await ProfileFactory.create_user(db_session)
        admin = await ProfileFactory.create_admin(db_session)
        await TicketFactory.create(db_session, submitter=user)
        await TicketFactory.create(db_session, submitter=other)

        mine = await client.get(API, headers=auth_headers(user))
        everything = await client.get(API, headers=auth_headers(admin))

        assert mine.json()["total"] == 1
        assert everything.json()["total"] == 2

    @pytest.mark.asyncio
    async def test_list_filters(self, client, db_session):
        admin = await ProfileFactory.create_admin(db_session)
        user = await ProfileFactory.create_user(db_session)
        await TicketFactory.create(db_session, submitter=user, title="VPN broken")
        await TicketFactory.create(db_session, submitter=user, title="Printer", priority=TicketPriority.URGENT)

        by_search = await client.get(API, params={"search": "vpn"}, headers=auth_headers(admin))
        by_priority = await client.get(API, params={"priority": "urgent"}, headers=auth_headers(admin))

        assert [t["title"] for t in by_search.json()["items"]] == ["VPN broken"]
        assert [t["title"] for t in by_priority.json()["items"]] == ["Printer"]

    @pytest.mark.asyncio
    async def test_stats(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        await TicketFactory.create(db_session, submitter=user)
        await TicketFactory.create(db_session, submitter=user, status=TicketStatus.CLOSED)

        response = await client.get(f"{API}/stats", headers=auth_headers(user))

        assert response.status_code == 200
        stats = response.json()
        assert stats["total"] == 2
        assert stats["open"] == 1
        assert stats["closed"] == 1


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        admin = await ProfileFactory.create_admin(db_session)
        employee = await ProfileFactory.create_employee(db_session)
        ticket_id = (await _create(client, user))["id"]

        assigned = await client.patch(
            f"{API}/{ticket_id}/assign", json={"assignee_id": employee.id}, headers=auth_headers(admin)
        )
        assert assigned.status_code == 200
        assert assigned.json()["assignee"]["id"] == employee.id

        waiting = await client.patch(
            f"{API}/{ticket_id}/status", json={"status": "waiting"}, headers=auth_headers(employee)
        )
        assert waiting.json()["status"] == "waiting"

        closed = await client.patch(
            f"{API}/{ticket_id}/status",
            json={"status": "closed", "comment": "Mailbox repaired"},
            headers=auth_headers(employee),
        )
        assert closed.json()["status"] == "closed"
        assert closed.json()["closed_at"] is not None

        reopened = await client.post(f"{API}/{ticket_id}/reopen", headers=auth_headers(employee))
        assert reopened.json()["status"] == "open"
        assert reopened.json()["closed_at"] is None

        history = (await client.get(f"{API}/{ticket_id}/history", headers=auth_headers(user))).json()
        assert [e["action"] for e in history] == [
            "reopened",
            "status_changed",
            "status_changed",
            "assigned",
            "created",
        ]

        comments = (await client.get(f"{API}/{ticket_id}/comments", headers=auth_headers(user))).json()
        assert [c["content"] for c in comments] == [
            "Mailbox repaired",
            f"Ticket reopened for further analysis by {employee.full_name}.",
        ]

    @pytest.mark.asyncio
    async def test_same_status_is_409(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        employee = await ProfileFactory.create_employee(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user, assignee=employee)

        response = await client.patch(
            f"{API}/{ticket.id}/status", json={"status": "open"}, headers=auth_headers(employee)
        )

        assert response.status_code == 409
        assert response.json()["error"] == "InvalidTransitionError"

    @pytest.mark.asyncio
    async def test_closed_ticket_needs_reopen(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        admin = await ProfileFactory.create_admin(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user, status=TicketStatus.CLOSED)

        response = await client.patch(
            f"{API}/{ticket.id}/status", json={"status": "waiting"}, headers=auth_headers(admin)
        )
        history = await client.get(f"{API}/{ticket.id}/history", headers=auth_headers(admin))

        assert response.status_code == 409
        assert history.json() == []

    @pytest.mark.asyncio
    async def test_user_cannot_change_status(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user)

        response = await client.patch(
            f"{API}/{ticket.id}/status", json={"status": "closed"}, headers=auth_headers(user)
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_status_value(self, client, db_session):
        admin = await ProfileFactory.create_admin(db_session)
        ticket = await TicketFactory.create(db_session, submitter=admin)

        response = await client.patch(
            f"{API}/{ticket.id}/status", json={"status": "resolved"}, headers=auth_headers(admin)
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_ticket(self, client, db_session):
        admin = await ProfileFactory.create_admin(db_session)

        response = await client.patch(
            f"{API}/424242/priority", json={"priority": "high"}, headers=auth_headers(admin)
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_mark_duplicate(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        admin = await ProfileFactory.create_admin(db_session)
        original = await TicketFactory.create(db_session, submitter=user)
        copy = await TicketFactory.create(db_session, submitter=user)

        response = await client.post(
            f"{API}/{copy.id}/duplicate",
            json={"duplicate_of_id": original.id},
            headers=auth_headers(admin),
        )
        history = (await client.get(f"{API}/{copy.id}/history", headers=auth_headers(admin))).json()

        assert response.json()["status"] == "closed"
        assert history[0]["field_name"] == "duplicate_of"
        assert history[0]["new_value"] == str(original.id)

    @pytest.mark.asyncio
    async def test_employee_cannot_assign(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        employee = await ProfileFactory.create_employee(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user, assignee=employee)

        response = await client.patch(
            f"{API}/{ticket.id}/assign", json={"assignee_id": employee.id}, headers=auth_headers(employee)
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_assign_to_user_rejected(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        admin = await ProfileFactory.create_admin(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user)

        response = await client.patch(
            f"{API}/{ticket.id}/assign", json={"assignee_id": user.id}, headers=auth_headers(admin)
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_priority_and_due_date(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        admin = await ProfileFactory.create_admin(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user)

        priority = await client.patch(
            f"{API}/{ticket.id}/priority", json={"priority": "urgent"}, headers=auth_headers(admin)
        )
        due = await client.patch(
            f"{API}/{ticket.id}/due-date",
            json={"due_date": "2020-01-01T09:00:00Z"},
            headers=auth_headers(admin),
        )

        assert priority.json()["priority"] == "urgent"
        assert due.json()["due_date"].startswith("2020-01-01T09:00:00")
        assert due.json()["is_overdue"] is True


class TestComments:

    @pytest.mark.asyncio
    async def test_private_notes_hidden_from_submitter(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        employee = await ProfileFactory.create_employee(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user, assignee=employee)

        public = await client.post(
            f"{API}/{ticket.id}/comments", json={"content": "Looking into it"}, headers=auth_headers(employee)
        )
        note = await client.post(
            f"{API}/{ticket.id}/comments",
            json={"content": "Probably PEBKAC", "is_private": True},
            headers=auth_headers(employee),
        )
        as_user = await client.get(f"{API}/{ticket.id}/comments", headers=auth_headers(user))
        as_staff = await client.get(f"{API}/{ticket.id}/comments", headers=auth_headers(employee))

        assert public.status_code == 201
        assert public.json()["author"]["id"] == employee.id
        assert note.status_code == 201
        assert [c["content"] for c in as_user.json()] == ["Looking into it"]
        assert len(as_staff.json()) == 2

    @pytest.mark.asyncio
    async def test_user_cannot_write_private_note(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user)

        response = await client.post(
            f"{API}/{ticket.id}/comments",
            json={"content": "secret", "is_private": True},
            headers=auth_headers(user),
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_comment_on_invisible_ticket(self, client, db_session):
        owner = await ProfileFactory.create_user(db_session)
        other = await ProfileFactory.create_user(db_session)
        ticket = await TicketFactory.create(db_session, submitter=owner)

        response = await client.post(
            f"{API}/{ticket.id}/comments", json={"content": "hi"}, headers=auth_headers(other)
        )
        listing = await client.get(f"{API}/{ticket.id}/comments", headers=auth_headers(other))

        assert response.status_code == 403
        assert listing.json() == []


class TestAttachments:

    @pytest.mark.asyncio
    async def test_upload_download_delete(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user)

        uploaded = await client.post(
            f"{API}/{ticket.id}/attachments",
            files={"file": ("error log.txt", b"stack trace here", "text/plain")},
            headers=auth_headers(user),
        )
        assert uploaded.status_code == 201
        attachment = uploaded.json()
        assert attachment["filename"] == "error log.txt"
        assert attachment["byte_size"] == 16
        assert "blob_ref" not in attachment

        link = await client.get(
            f"{API}/{ticket.id}/attachments/{attachment['id']}/url", headers=auth_headers(user)
        )
        assert link.status_code == 200
        url = link.json()["url"]

        # Signed URLs need no bearer token
        download = await client.get(url)
        assert download.status_code == 200
        assert download.content == b"stack trace here"

        tampered = await client.get(url[:-4] + "0000")
        assert tampered.status_code == 403

        deleted = await client.delete(
            f"{API}/{ticket.id}/attachments/{attachment['id']}", headers=auth_headers(user)
        )
        assert deleted.status_code == 204

        listing = await client.get(f"{API}/{ticket.id}/attachments", headers=auth_headers(user))
        assert listing.json() == []

    @pytest.mark.asyncio
    async def test_empty_upload_rejected(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user)

        response = await client.post(
            f"{API}/{ticket.id}/attachments",
            files={"file": ("empty.txt", b"", "text/plain")},
            headers=auth_headers(user),
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_oversized_upload_rejected(self, client, db_session, monkeypatch, blob_store):
        user = await ProfileFactory.create_user(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user)
        monkeypatch.setattr(settings, "MAX_ATTACHMENT_BYTES", 8)

        response = await client.post(
            f"{API}/{ticket.id}/attachments",
            files={"file": ("big.log", b"0123456789abcdef", "text/plain")},
            headers=auth_headers(user),
        )

        assert response.status_code == 400
        assert response.json()["details"]["max_bytes"] == 8
        assert not blob_store.root.exists() or not any(blob_store.root.rglob("*.log"))

    @pytest.mark.asyncio
    async def test_url_for_invisible_attachment_is_404(self, client, db_session):
        owner = await ProfileFactory.create_user(db_session)
        other = await ProfileFactory.create_user(db_session)
        ticket = await TicketFactory.create(db_session, submitter=owner)
        uploaded = await client.post(
            f"{API}/{ticket.id}/attachments",
            files={"file": ("a.txt", b"x", "text/plain")},
            headers=auth_headers(owner),
        )

        response = await client.get(
            f"{API}/{ticket.id}/attachments/{uploaded.json()['id']}/url", headers=auth_headers(other)
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_other_user_cannot_delete(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        employee = await ProfileFactory.create_employee(db_session)
        admin = await ProfileFactory.create_admin(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user, assignee=employee)
        uploaded = await client.post(
            f"{API}/{ticket.id}/attachments",
            files={"file": ("a.txt", b"x", "text/plain")},
            headers=auth_headers(employee),
        )

        by_user = await client.delete(
            f"{API}/{ticket.id}/attachments/{uploaded.json()['id']}", headers=auth_headers(user)
        )
        by_admin = await client.delete(
            f"{API}/{ticket.id}/attachments/{uploaded.json()['id']}", headers=auth_headers(admin)
        )

        assert by_user.status_code == 403
        assert by_admin.status_code == 204


class TestNotifications:

    @pytest.mark.asyncio
    async def test_create_notifies_admins(self, client, db_session, dispatcher):
        user = await ProfileFactory.create_user(db_session)
        await ProfileFactory.create_admin(db_session, email="admin@example.com")
        await ProfileFactory.create_owner(db_session, email="owner@example.com")
        await NotificationRuleFactory.create(
            db_session, NotificationEventType.TICKET_CREATED, [RecipientSelector.ALL_ADMINS]
        )

        await _create(client, user, title="Need VPN access")
        await dispatcher.drain()

        assert sorted(_sent_to(NotificationEventType.TICKET_CREATED)) == [
            "admin@example.com",
            "owner@example.com",
        ]
        assert MockEmailProvider.sent_emails[0].subject == "New Ticket: Need VPN access"

    @pytest.mark.asyncio
    async def test_no_rules_sends_nothing(self, client, db_session, dispatcher):
        user = await ProfileFactory.create_user(db_session)
        await ProfileFactory.create_admin(db_session)

        await _create(client, user)
        await dispatcher.drain()

        assert MockEmailProvider.sent_emails == []

    @pytest.mark.asyncio
    async def test_assignment_notifies_assignee(self, client, db_session, dispatcher):
        user = await ProfileFactory.create_user(db_session)
        admin = await ProfileFactory.create_admin(db_session)
        employee = await ProfileFactory.create_employee(db_session, email="agent@example.com")
        ticket = await TicketFactory.create(db_session, submitter=user)
        await NotificationRuleFactory.create(
            db_session, NotificationEventType.TICKET_ASSIGNED, [RecipientSelector.SUBMITTER]
        )

        await client.patch(
            f"{API}/{ticket.id}/assign", json={"assignee_id": employee.id}, headers=auth_headers(admin)
        )
        await dispatcher.drain()

        assert _sent_to(NotificationEventType.TICKET_ASSIGNED) == [user.email, "agent@example.com"]

    @pytest.mark.asyncio
    async def test_close_notifies_submitter(self, client, db_session, dispatcher):
        user = await ProfileFactory.create_user(db_session)
        admin = await ProfileFactory.create_admin(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user)
        await NotificationRuleFactory.create(
            db_session, NotificationEventType.TICKET_CLOSED, [RecipientSelector.SUBMITTER]
        )

        await client.patch(
            f"{API}/{ticket.id}/status", json={"status": "closed"}, headers=auth_headers(admin)
        )
        await dispatcher.drain()

        assert _sent_to(NotificationEventType.TICKET_CLOSED) == [user.email]

    @pytest.mark.asyncio
    async def test_private_note_never_notifies(self, client, db_session, dispatcher):
        user = await ProfileFactory.create_user(db_session)
        employee = await ProfileFactory.create_employee(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user, assignee=employee)
        await NotificationRuleFactory.create(
            db_session, NotificationEventType.COMMENT_ADDED, [RecipientSelector.SUBMITTER]
        )

        await client.post(
            f"{API}/{ticket.id}/comments",
            json={"content": "internal", "is_private": True},
            headers=auth_headers(employee),
        )
        await client.post(
            f"{API}/{ticket.id}/comments", json={"content": "On it"}, headers=auth_headers(employee)
        )
        await dispatcher.drain()

        assert _sent_to(NotificationEventType.COMMENT_ADDED) == [user.email]

    @pytest.mark.asyncio
    async def test_rejected_mutation_sends_nothing(self, client, db_session, dispatcher):
        user = await ProfileFactory.create_user(db_session)
        admin = await ProfileFactory.create_admin(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user, status=TicketStatus.CLOSED)
        await NotificationRuleFactory.create(
            db_session, NotificationEventType.TICKET_UPDATED, [RecipientSelector.SUBMITTER]
        )

        response = await client.patch(
            f"{API}/{ticket.id}/status", json={"status": "waiting"}, headers=auth_headers(admin)
        )
        await dispatcher.drain()

        assert response.status_code == 409
        assert MockEmailProvider.sent_emails == []

    @pytest.mark.asyncio
    async def test_unreachable_channel_does_not_fail_mutation(self, client, db_session, dispatcher):
        user = await ProfileFactory.create_user(db_session)
        admin = await ProfileFactory.create_admin(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user)
        await NotificationRuleFactory.create(
            db_session, NotificationEventType.TICKET_CLOSED, [RecipientSelector.SUBMITTER]
        )
        set_delivery_channel(UnreachableChannel())

        response = await client.patch(
            f"{API}/{ticket.id}/status", json={"status": "closed"}, headers=auth_headers(admin)
        )
        results = await dispatcher.drain()

        assert response.status_code == 200
        assert response.json()["status"] == "closed"

        history = (await client.get(f"{API}/{ticket.id}/history", headers=auth_headers(admin))).json()
        assert [e["action"] for e in history] == ["status_changed"]

        (result,) = results
        assert result.delivered == []
        assert len(result.failures) == 1
        assert result.failures[0].context["recipient"] == user.email
        assert "connection refused" in result.failures[0].message


class TestBulkUpdate:

    @pytest.mark.asyncio
    async def test_bulk_close_reports_per_ticket(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        admin = await ProfileFactory.create_admin(db_session)
        open_ticket = await TicketFactory.create(db_session, submitter=user)
        waiting = await TicketFactory.create(db_session, submitter=user, status=TicketStatus.WAITING)

        response = await client.post(
            f"{API}/bulk",
            json={
                "ticket_ids": [open_ticket.id, waiting.id, 9999],
                "status": "closed",
                "priority": "high",
            },
            headers=auth_headers(admin),
        )

        assert response.status_code == 200
        body = response.json()
        assert (body["succeeded"], body["failed"]) == (2, 1)
        assert body["results"][0] == {
            "ticket_id": open_ticket.id,
            "ok": True,
            "applied": ["priority", "status"],
            "error": None,
            "message": None,
            "status_code": None,
        }
        assert body["results"][2]["error"] == "TicketNotFoundError"
        assert body["results"][2]["status_code"] == 404

        fetched = await client.get(f"{API}/{waiting.id}", headers=auth_headers(admin))
        assert fetched.json()["status"] == "closed"
        assert fetched.json()["priority"] == "high"

    @pytest.mark.asyncio
    async def test_user_gets_per_ticket_denials(self, client, db_session):
        user = await ProfileFactory.create_user(db_session)
        ticket = await TicketFactory.create(db_session, submitter=user)

        response = await client.post(
            f"{API}/bulk",
            json={"ticket_ids": [ticket.id], "status": "closed"},
            headers=auth_headers(user),
        )

        assert response.status_code == 200
        assert response.json()["results"][0]["status_code"] == 403

    @pytest.mark.asyncio
    async def test_bulk_without_fields_is_400(self, client, db_session):
        admin = await ProfileFactory.create_admin(db_session)

        response = await client.post(
            f"{API}/bulk", json={"ticket_ids": [1]}, headers=auth_headers(admin)
        )

        assert response.status_code == 400
