"""
Profile and Category Data Access Objects.

WHAT: Lookups against the active-principal directory and the category list.

WHY: The principal resolver, the assignee validation and the notification
dispatcher all read profiles; keeping the queries here keeps the role
semantics ("all admins" includes owners) in one place.
"""

from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.dao.base import BaseDAO
from helpdesk.models.profile import Profile, ProfileRole
from helpdesk.models.ticket import Category


class ProfileDAO(BaseDAO[Profile]):
    """Data Access Object for Profile operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(Profile, session)

    async def get_by_user_id(self, user_id: str) -> Optional[Profile]:
        """
        Get profile by the auth provider's subject id.

        Args:
            user_id: JWT "sub" claim

        Returns:
            Profile or None if not found
        """
        result = await self.session.execute(
            select(Profile).where(Profile.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_active_by_roles(self, roles: Iterable[ProfileRole]) -> List[Profile]:
        """
        List active profiles holding any of the given roles.

        WHY: Backs the all_admins / all_employees recipient selectors.
        Inactive profiles never receive notifications.

        Args:
            roles: Roles to include

        Returns:
            Active profiles ordered by id
        """
        result = await self.session.execute(
            select(Profile)
            .where(
                Profile.role.in_(list(roles)),
                Profile.is_active.is_(True),
            )
            .order_by(Profile.id)
        )
        return list(result.scalars().all())


class CategoryDAO(BaseDAO[Category]):
    """Data Access Object for Category lookups."""

    def __init__(self, session: AsyncSession):
        super().__init__(Category, session)
