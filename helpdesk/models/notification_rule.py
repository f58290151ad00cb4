"""
Notification rule model.

WHAT: Maps a domain event type to the recipient groups that hear about it.

WHY: Administrators decide which events send e-mail and to whom. The
dispatcher only reads rules at delivery time; editing them happens in an
admin tool outside this service.
"""

import enum
from typing import List

from sqlalchemy import Integer, Boolean, JSON, Enum as SQLEnum, Index
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.models.base import Base


class NotificationEventType(str, enum.Enum):
    """Domain events that can trigger notifications."""

    TICKET_CREATED = "ticket_created"
    TICKET_ASSIGNED = "ticket_assigned"
    TICKET_UPDATED = "ticket_updated"
    TICKET_CLOSED = "ticket_closed"
    COMMENT_ADDED = "comment_added"
    TICKET_REOPENED = "ticket_reopened"
    TICKET_DUPLICATED = "ticket_duplicated"


class RecipientSelector(str, enum.Enum):
    """
    Recipient groups a rule can target.

    - SUBMITTER / ASSIGNEE: resolved from the ticket record
    - ALL_ADMINS: every active admin and owner
    - ALL_EMPLOYEES: every active employee
    """

    SUBMITTER = "submitter"
    ASSIGNEE = "assignee"
    ALL_ADMINS = "all_admins"
    ALL_EMPLOYEES = "all_employees"


class NotificationRule(Base):
    """Which recipients hear about an event type."""

    __tablename__ = "notification_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_type: Mapped[NotificationEventType] = mapped_column(
        SQLEnum(NotificationEventType, name="notificationeventtype"), nullable=False
    )

    # List of RecipientSelector values
    recipient_selectors: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)

    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("ix_notification_rules_event_type", "event_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationRule(id={self.id}, event_type={self.event_type.value}, "
            f"enabled={self.is_enabled})>"
        )

    @property
    def selectors(self) -> List[RecipientSelector]:
        """
        Parsed recipient selectors.

        WHY: Unknown values (e.g. from a newer admin tool) are ignored rather
        than failing the whole dispatch.
        """
        parsed = []
        for value in self.recipient_selectors or []:
            try:
                parsed.append(RecipientSelector(value))
            except ValueError:
                continue
        return parsed
