"""SQLAlchemy declarative base and shared mixins."""
from datetime import datetime
from sqlalchemy import String, DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class CreatedAtMixin:
    """Adds an indexed created_at column. Set by the application, never updated."""
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class SourceAddressMixin:
    """Adds the client address the record was created from."""
    source_address: Mapped[str] = mapped_column(String(45), nullable=False, default="")
