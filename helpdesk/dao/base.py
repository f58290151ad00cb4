"""
Base Data Access Object (DAO) class.

WHY: Profiles, categories and notification rules only need primary-key
lookups on top of their own queries. Ticket-side DAOs carry their own
visibility-scoped lookups and do not inherit from this class.
"""

from typing import Generic, Iterable, List, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.models.base import Base

# Type variable for model class
ModelType = TypeVar("ModelType", bound=Base)


class BaseDAO(Generic[ModelType]):
    """
    Primary-key lookups shared by the directory DAOs.

    DAOs flush but never commit; the service owning the operation decides
    the transaction boundary.

    Type Parameters:
        ModelType: The SQLAlchemy model class this DAO manages
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self.model = model
        self.session = session

    async def get_by_id(self, id: int) -> Optional[ModelType]:
        """
        Retrieve a single record by primary key.

        Returns:
            The model instance if found, None otherwise
        """
        result = await self.session.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def get_many(self, ids: Iterable[Optional[int]]) -> List[ModelType]:
        """
        Retrieve several records by primary key.

        None entries and unknown ids are skipped; order follows the id.
        """
        wanted = [i for i in ids if i is not None]
        if not wanted:
            return []
        result = await self.session.execute(
            select(self.model).where(self.model.id.in_(wanted)).order_by(self.model.id)
        )
        return list(result.scalars().all())
