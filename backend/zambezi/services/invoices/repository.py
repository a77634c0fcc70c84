"""
Invoice repository.

Data access for invoices and the per-month numbering counter. Methods
flush but never commit; the calling gateway operation owns the transaction.
"""

from datetime import date
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from zambezi.core.logging import get_logger
from zambezi.database.models import Invoice, InvoiceSequence, InvoiceStatus

logger = get_logger(__name__)


class InvoiceRepositoryError(Exception):
    """Base exception for invoice repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class InvoiceRepository:
    """Async data access for invoices and invoice numbering."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_order_id(self, order_id: int) -> Optional[Invoice]:
        try:
            result = await self.session.execute(
                select(Invoice).where(
                    Invoice.order_id == order_id,
                    Invoice.deleted_at.is_(None),
                )
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to retrieve invoice for order",
                order_id=order_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise InvoiceRepositoryError(
                "Failed to retrieve invoice",
                order_id=order_id,
                error=str(e),
            ) from e

    async def add(self, invoice: Invoice) -> Invoice:
        try:
            self.session.add(invoice)
            await self.session.flush()
            return invoice
        except IntegrityError as e:
            logger.error(
                "Invoice creation failed - integrity error",
                order_id=invoice.order_id,
                invoice_number=invoice.invoice_number,
                error=str(e),
            )
            raise InvoiceRepositoryError(
                "Invoice creation failed - duplicate or constraint violation",
                order_id=invoice.order_id,
                error=str(e),
            ) from e
        except SQLAlchemyError as e:
            raise InvoiceRepositoryError(
                "Invoice creation failed",
                order_id=invoice.order_id,
                error=str(e),
            ) from e

    async def next_sequence_value(self, period: str) -> int:
        """
        Atomically take the next invoice sequence number for ``period``.

        The counter row stays locked until the surrounding transaction ends,
        so concurrent checkouts in the same month are serialized on it. The
        first number of a period inserts the row inside a savepoint; losing
        that insert race falls back to incrementing the winner's row.

        Args:
            period: Numbering period in ``YYYYMM`` form

        Returns:
            The sequence number to use, starting at 1 for each period
        """
        increment = (
            update(InvoiceSequence)
            .where(InvoiceSequence.period == period)
            .values(last_value=InvoiceSequence.last_value + 1)
            .returning(InvoiceSequence.last_value)
        )

        try:
            value = (await self.session.execute(increment)).scalar_one_or_none()
            if value is not None:
                return value

            try:
                async with self.session.begin_nested():
                    self.session.add(InvoiceSequence(period=period, last_value=1))
                return 1
            except IntegrityError:
                logger.info("Invoice sequence created concurrently", period=period)
                return (await self.session.execute(increment)).scalar_one()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to allocate invoice number",
                period=period,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise InvoiceRepositoryError(
                "Failed to allocate invoice number",
                period=period,
                error=str(e),
            ) from e

    async def list_overdue_candidates(self, today: date) -> list[Invoice]:
        """Pending invoices whose due date has passed."""
        try:
            result = await self.session.execute(
                select(Invoice).where(
                    Invoice.status == InvoiceStatus.PENDING,
                    Invoice.due_date < today,
                    Invoice.deleted_at.is_(None),
                )
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise InvoiceRepositoryError(
                "Failed to list overdue invoices",
                error=str(e),
            ) from e
