"""
Base model class for all SQLAlchemy models.

WHY: Centralizing common model functionality in a base class ensures
consistency across all models and reduces code duplication.
"""

from datetime import datetime

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    WHY: DeclarativeBase provides the foundation for SQLAlchemy 2.0 models
    with improved type hints and async support.
    """

    pass


class CreatedAtMixin:
    """
    Mixin to add a creation timestamp to models.

    WHY: Comments, attachments and history entries are immutable once
    written, so they only ever need a creation timestamp.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
