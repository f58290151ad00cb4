"""
Notification Rule Data Access Object.

WHAT: Read access to notification rules for the dispatcher.
"""

from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.dao.base import BaseDAO
from helpdesk.models.notification_rule import NotificationRule, NotificationEventType


class NotificationRuleDAO(BaseDAO[NotificationRule]):
    """Data Access Object for NotificationRule lookups."""

    def __init__(self, session: AsyncSession):
        super().__init__(NotificationRule, session)

    async def list_enabled_for(self, event_type: NotificationEventType) -> List[NotificationRule]:
        """
        List enabled rules for an event type.

        Args:
            event_type: Domain event being dispatched

        Returns:
            Enabled rules, oldest first
        """
        result = await self.session.execute(
            select(NotificationRule)
            .where(
                NotificationRule.event_type == event_type,
                NotificationRule.is_enabled.is_(True),
            )
            .order_by(NotificationRule.id)
        )
        return list(result.scalars().all())
