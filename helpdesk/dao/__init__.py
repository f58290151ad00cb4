"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and business logic,
making the codebase more testable and maintainable.
"""

from helpdesk.dao.base import BaseDAO
from helpdesk.dao.profile import ProfileDAO, CategoryDAO
from helpdesk.dao.ticket import TicketDAO, TicketCommentDAO, TicketAttachmentDAO
from helpdesk.dao.history import HistoryDAO
from helpdesk.dao.notification_rule import NotificationRuleDAO

__all__ = [
    "BaseDAO",
    "ProfileDAO",
    "CategoryDAO",
    "TicketDAO",
    "TicketCommentDAO",
    "TicketAttachmentDAO",
    "HistoryDAO",
    "NotificationRuleDAO",
]
