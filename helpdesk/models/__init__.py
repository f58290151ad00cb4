"""
Database models package.

WHY: Centralizing model imports ensures Alembic can discover all models
for migration generation and makes it easier to import models elsewhere.
"""

from helpdesk.models.base import Base, CreatedAtMixin
from helpdesk.models.profile import Profile, ProfileRole, STAFF_ROLES, PRIVILEGED_ROLES
from helpdesk.models.ticket import (
    Category,
    Ticket,
    TicketStatus,
    TicketPriority,
    TicketComment,
    TicketAttachment,
    HIGH_PRIORITIES,
)
from helpdesk.models.history import TicketHistory, HistoryAction
from helpdesk.models.notification_rule import (
    NotificationRule,
    NotificationEventType,
    RecipientSelector,
)

__all__ = [
    "Base",
    "CreatedAtMixin",
    "Profile",
    "ProfileRole",
    "STAFF_ROLES",
    "PRIVILEGED_ROLES",
    "Category",
    "Ticket",
    "TicketStatus",
    "TicketPriority",
    "TicketComment",
    "TicketAttachment",
    "HIGH_PRIORITIES",
    "TicketHistory",
    "HistoryAction",
    "NotificationRule",
    "NotificationEventType",
    "RecipientSelector",
]
