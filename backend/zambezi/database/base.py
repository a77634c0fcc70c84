"""
SQLAlchemy declarative base and common model mixins.

This module provides the SQLAlchemy DeclarativeBase, common mixins for
integer keys, timestamps and soft deletes, plus a portable JSON column type
that maps to JSONB on PostgreSQL.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, BigInteger, DateTime, Integer, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

from zambezi.core.logging import get_logger

logger = get_logger(__name__)

JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY columns
IdType = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all SQLAlchemy models with async support.

    Provides common functionality for all database models including
    async attribute loading and serialization helpers.
    """

    def to_dict(self, exclude: Optional[set[str]] = None) -> Dict[str, Any]:
        """
        Convert model instance to a JSON friendly dictionary.

        Args:
            exclude: Set of attribute names to exclude from output

        Returns:
            Dictionary representation of the model's columns
        """
        exclude = exclude or set()
        result = {}

        for column in self.__table__.columns:
            if column.name in exclude:
                continue
            value = getattr(self, column.key)
            if isinstance(value, datetime):
                result[column.name] = value.isoformat()
            elif isinstance(value, Decimal):
                result[column.name] = str(value)
            elif isinstance(value, Enum):
                result[column.name] = value.value
            else:
                result[column.name] = value

        return result

    def __repr__(self) -> str:
        pk_values = []
        for column in self.__table__.primary_key.columns:
            value = getattr(self, column.key, None)
            if value is not None:
                pk_values.append(f"{column.name}={value!r}")

        pk_str = ", ".join(pk_values) if pk_values else "no primary key"
        return f"<{self.__class__.__name__}({pk_str})>"


class TimestampMixin:
    """
    Mixin for automatic timestamp management.

    Adds created_at and updated_at columns managed by the database.
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            comment="Timestamp when record was created",
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now(),
            comment="Timestamp when record was last updated",
        )


class IntegerIdMixin:
    """
    Mixin for an auto-incrementing integer primary key.

    Payment and invoice ids are exposed to the storefront and to support
    staff, so they stay short and sequential.
    """

    @declared_attr
    def id(cls) -> Mapped[int]:
        return mapped_column(
            IdType,
            primary_key=True,
            autoincrement=True,
            comment="Unique identifier for the record",
        )


class SoftDeleteMixin:
    """
    Mixin for soft delete functionality.

    Adds deleted_at column for marking records as deleted without
    physically removing them from the database.
    """

    @declared_attr
    def deleted_at(cls) -> Mapped[Optional[datetime]]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=True,
            default=None,
            comment="Timestamp when record was soft deleted",
        )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def soft_delete(self) -> None:
        """Mark record as deleted."""
        if self.deleted_at is None:
            self.deleted_at = utcnow()
            logger.info(
                "Record soft deleted",
                model=self.__class__.__name__,
                record_id=getattr(self, "id", None),
            )

    def restore(self) -> None:
        """Restore soft deleted record."""
        if self.deleted_at is not None:
            self.deleted_at = None
            logger.info(
                "Record restored",
                model=self.__class__.__name__,
                record_id=getattr(self, "id", None),
            )


class BaseModel(Base, IntegerIdMixin, TimestampMixin):
    """
    Base model with integer primary key and timestamps.

    Example:
        class Order(BaseModel):
            __tablename__ = "orders"

            order_number: Mapped[str] = mapped_column(String(20), unique=True)
            total: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    """

    __abstract__ = True


class SoftDeleteModel(BaseModel, SoftDeleteMixin):
    """Base model with integer key, timestamps, and soft delete."""

    __abstract__ = True


def enum_values(enum_cls: type[Enum]) -> list[str]:
    """Persist enums by value (``"pending"``) rather than member name."""
    return [member.value for member in enum_cls]
