"""Order and invoice writes driven by payment outcomes."""

from enum import Enum
from typing import Optional

from zambezi.core.logging import get_logger
from zambezi.database.models import Order, OrderStatus, Payment
from zambezi.services.invoices.service import InvoiceService
from zambezi.services.orders.state_machine import OrderStateMachine

logger = get_logger(__name__)


class PaymentOutcome(str, Enum):
    """Normalized result of a payment event."""

    CAPTURED = "captured"
    COLLECTED = "collected"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderStateUpdater:
    """
    Applies the order and invoice side of a payment outcome.

    CAPTURED confirms the order and marks its invoice paid. COLLECTED (cash
    handed over on delivery) marks the order delivered and the invoice paid.
    FAILED and REFUNDED leave the order where it is.
    """

    def __init__(self, state_machine: OrderStateMachine, invoices: InvoiceService):
        self.state_machine = state_machine
        self.invoices = invoices

    def apply(self, payment: Payment, outcome: PaymentOutcome) -> None:
        order = payment.order
        reason = f"{payment.gateway.value} payment {outcome.value}"

        if outcome is PaymentOutcome.CAPTURED:
            self.state_machine.advance(order, OrderStatus.CONFIRMED, reason=reason)
            self._mark_invoice_paid(order)
        elif outcome is PaymentOutcome.COLLECTED:
            self.state_machine.advance(order, OrderStatus.DELIVERED, reason=reason)
            self._mark_invoice_paid(order)
        elif outcome is PaymentOutcome.FAILED or outcome is PaymentOutcome.REFUNDED:
            logger.info(
                "Payment outcome recorded without order change",
                order_id=order.id,
                payment_id=payment.id,
                outcome=outcome.value,
            )
        else:
            raise ValueError(f"Unhandled payment outcome: {outcome}")

    def confirm_order(self, order: Order, reason: Optional[str] = None) -> None:
        """Confirm an order ahead of payment, as Cash on Delivery does."""
        self.state_machine.advance(order, OrderStatus.CONFIRMED, reason=reason)

    def cancel_order(self, order: Order, reason: Optional[str] = None) -> None:
        """
        Cancel an order and its unpaid invoice.

        Raises:
            StateTransitionError: If the order is past confirmation
        """
        self.state_machine.apply_transition(order, OrderStatus.CANCELLED, reason=reason)
        if order.invoice is not None:
            self.invoices.cancel(order.invoice, reason=reason)

    def _mark_invoice_paid(self, order: Order) -> None:
        if order.invoice is None:
            logger.warning("No invoice to mark paid", order_id=order.id)
            return
        self.invoices.mark_as_paid(order.invoice)
