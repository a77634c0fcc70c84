"""
Invoice service.

Generates one invoice per order, numbers it from the per-month counter and
tracks its status as payments complete, lapse or are cancelled.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from zambezi.core.logging import get_logger
from zambezi.core.money import format_money
from zambezi.database.models import Invoice, InvoiceStatus, Order
from zambezi.services.invoices.repository import InvoiceRepository

logger = get_logger(__name__)

PAYMENT_TERMS_DAYS = 30


class InvoiceStateError(Exception):
    """Raised when an invoice cannot take the requested status."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


def format_invoice_number(period: str, sequence: int) -> str:
    """
    Format an invoice number.

    Example:
        >>> format_invoice_number("202406", 7)
        'INV-202406-0007'
    """
    return f"INV-{period}-{sequence:04d}"


class InvoiceService:
    """
    Invoice generation and lifecycle.

    Methods stage changes on the session; the caller commits.
    """

    def __init__(
        self,
        session: AsyncSession,
        repository: Optional[InvoiceRepository] = None,
    ):
        self.session = session
        self.repository = repository or InvoiceRepository(session)

    async def next_invoice_number(self, today: Optional[date] = None) -> str:
        today = today or date.today()
        period = today.strftime("%Y%m")
        sequence = await self.repository.next_sequence_value(period)
        return format_invoice_number(period, sequence)

    async def generate_from_order(
        self,
        order: Order,
        today: Optional[date] = None,
    ) -> Invoice:
        """
        Return the order's invoice, creating it on first call.

        Args:
            order: Order to invoice
            today: Issue date, defaults to the current date

        Returns:
            The existing or newly created invoice
        """
        existing = order.invoice or await self.repository.get_by_order_id(order.id)
        if existing is not None:
            return existing

        today = today or date.today()
        invoice = Invoice(
            order_id=order.id,
            invoice_number=await self.next_invoice_number(today),
            subtotal=order.subtotal,
            delivery_fee=order.delivery_fee,
            discount=order.discount,
            total=order.total,
            currency=order.currency,
            status=InvoiceStatus.PENDING,
            issue_date=today,
            due_date=today + timedelta(days=PAYMENT_TERMS_DAYS),
        )
        invoice.order = order
        await self.repository.add(invoice)

        logger.info(
            "Invoice generated",
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            order_id=order.id,
            total=str(invoice.total),
        )
        return invoice

    def mark_as_paid(self, invoice: Invoice) -> bool:
        """
        Mark an invoice paid.

        Returns:
            False if the invoice was already paid or is cancelled
        """
        if invoice.status == InvoiceStatus.PAID:
            return False
        if invoice.status == InvoiceStatus.CANCELLED:
            logger.warning(
                "Payment received for cancelled invoice",
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
            )
            return False

        invoice.status = InvoiceStatus.PAID
        invoice.paid_at = datetime.now(timezone.utc)
        logger.info(
            "Invoice marked as paid",
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
        )
        return True

    def update_overdue_status(self, invoice: Invoice, today: Optional[date] = None) -> bool:
        today = today or date.today()
        if invoice.status == InvoiceStatus.PENDING and invoice.due_date < today:
            invoice.status = InvoiceStatus.OVERDUE
            return True
        return False

    async def mark_overdue_invoices(self, today: Optional[date] = None) -> int:
        """Flag every pending invoice past its due date as overdue."""
        today = today or date.today()
        invoices = await self.repository.list_overdue_candidates(today)
        updated = sum(1 for invoice in invoices if self.update_overdue_status(invoice, today))
        if updated:
            logger.info("Invoices marked overdue", count=updated)
        return updated

    def cancel(self, invoice: Invoice, reason: Optional[str] = None) -> None:
        """
        Cancel an unpaid invoice.

        Raises:
            InvoiceStateError: If the invoice has been paid
        """
        if invoice.status == InvoiceStatus.PAID:
            raise InvoiceStateError(
                "Paid invoices cannot be cancelled",
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
            )
        invoice.status = InvoiceStatus.CANCELLED
        if reason:
            invoice.notes = reason
        logger.info(
            "Invoice cancelled",
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            reason=reason,
        )

    def get_summary(self, invoice: Invoice, today: Optional[date] = None) -> dict[str, Any]:
        today = today or date.today()
        return {
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "status": invoice.status.value,
            "total": str(invoice.total),
            "total_formatted": format_money(invoice.total),
            "currency": invoice.currency,
            "issue_date": invoice.issue_date.isoformat(),
            "due_date": invoice.due_date.isoformat(),
            "paid_at": invoice.paid_at.isoformat() if invoice.paid_at else None,
            "is_overdue": invoice.is_overdue(today),
        }
