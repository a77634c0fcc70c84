"""
Order data access for the checkout flow.

Orders are created by the storefront; checkout only reads them and lets the
state machine change their status.
"""

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from zambezi.core.logging import get_logger
from zambezi.database.models import Order

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class OrderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_order_by_id(self, order_id: int) -> Optional[Order]:
        """
        Retrieve an order with its items, payment and invoice.

        Raises:
            OrderRepositoryError: If the query fails
        """
        try:
            result = await self.session.execute(select(Order).where(Order.id == order_id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to retrieve order",
                order_id=order_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise OrderRepositoryError(
                "Failed to retrieve order",
                order_id=order_id,
                error=str(e),
            ) from e
