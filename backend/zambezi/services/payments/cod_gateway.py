"""
Cash on Delivery.

No provider is involved: initiation confirms the order straight away and
the payment stays pending until the driver records the cash collected.
Refunds are bookkeeping only and must be paid out by hand.
"""

from decimal import Decimal
from typing import Any, NamedTuple, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from zambezi.core.config import CodGatewayConfig
from zambezi.core.logging import get_logger
from zambezi.core.money import format_money, format_plain, to_decimal
from zambezi.database.models import GatewayName, Order, Payment
from zambezi.services.invoices.service import InvoiceService
from zambezi.services.orders.updater import OrderStateUpdater, PaymentOutcome
from zambezi.services.payments.base import PaymentGateway, utc_timestamp
from zambezi.services.payments.repository import PaymentRepository
from zambezi.services.payments.results import BusinessRuleViolation, PaymentResult

logger = get_logger(__name__)

DEFAULT_COLLECTOR = "Delivery Driver"
SUPPORTED_CURRENCY = "AUD"


class CodAvailability(NamedTuple):
    available: bool
    message: str


class CashOnDeliveryGateway(PaymentGateway):
    gateway_name = GatewayName.COD

    initiate_failure_message = "Failed to process your order. Please try again."
    confirm_failure_message = "Failed to confirm cash collection."

    def __init__(
        self,
        session: AsyncSession,
        payments: PaymentRepository,
        invoices: InvoiceService,
        orders: OrderStateUpdater,
        config: CodGatewayConfig,
    ):
        super().__init__(session, payments, invoices, orders)
        self.config = config

    def is_enabled(self) -> bool:
        return self.config.enabled

    def is_available(self, order: Order) -> CodAvailability:
        """
        Check whether an order can be paid in cash on delivery.

        Args:
            order: Order at checkout

        Returns:
            Availability flag with a customer facing message
        """
        if (order.currency or "").upper() != SUPPORTED_CURRENCY:
            return CodAvailability(False, "Cash on Delivery is only available for Australian orders.")

        if to_decimal(order.total) > self.config.max_amount:
            return CodAvailability(
                False,
                f"Cash on Delivery is available for orders up to {format_money(self.config.max_amount)}.",
            )

        zone = order.delivery_zone
        if zone is not None and not zone.supports_cod:
            return CodAvailability(False, "Cash on Delivery is not available in your delivery area.")

        return CodAvailability(True, "Pay with cash when your order arrives.")

    async def _initiate(self, order: Order, extra: dict[str, Any]) -> PaymentResult:
        availability = self.is_available(order)
        if not availability.available:
            raise BusinessRuleViolation(availability.message, order_total=str(order.total))

        payment = await self._start_payment(
            order,
            f"COD_{order.order_number}",
            {"type": "cash_on_delivery", "collect_on_delivery": True},
        )
        self.orders.confirm_order(order, reason="Cash on delivery order placed")
        invoice = await self.invoices.generate_from_order(order)

        logger.info(
            "COD payment initiated",
            order_id=order.id,
            payment_id=payment.id,
            invoice_id=invoice.id,
        )
        return PaymentResult.ok(
            message=f"Your order has been placed. Please have {order.formatted_total} ready upon delivery.",
            payment_id=payment.id,
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            collect_amount=format_plain(order.total),
            collect_amount_formatted=order.formatted_total,
        )

    async def _confirm(self, payment: Payment, data: dict[str, Any]) -> PaymentResult:
        raw_amount = data.get("collected_amount")
        collected = to_decimal(payment.amount if raw_amount is None else raw_amount)
        collector = data.get("collector_name") or DEFAULT_COLLECTOR

        if collected < payment.amount:
            raise BusinessRuleViolation(
                f"Collected amount ({format_money(collected)}) is less than "
                f"the order total ({format_money(payment.amount)}).",
                payment_id=payment.id,
            )

        await self._complete_payment(
            payment,
            PaymentOutcome.COLLECTED,
            {
                "collected_amount": format_plain(collected),
                "collector_name": collector,
                "collected_at": utc_timestamp(),
            },
        )
        return PaymentResult.ok(
            message="Cash payment collected successfully.",
            payment_id=payment.id,
            collected_amount=format_plain(collected),
            change_due=format_plain(collected - to_decimal(payment.amount)),
        )

    async def _refund(self, payment: Payment, amount: Decimal) -> dict[str, Any]:
        count = len(self._known_refund_ids(payment)) + 1
        return {
            "refund_id": f"COD_REF_{payment.id}_{count}",
            "refund_note": "Manual cash refund required",
        }

    def refund_message(self, amount: Decimal) -> str:
        return f"Refund recorded. Please issue a manual cash refund of {format_money(amount)}"

    async def _process_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
        headers: dict[str, str],
    ) -> PaymentResult:
        return PaymentResult.ok(message="COD does not use webhooks.")
