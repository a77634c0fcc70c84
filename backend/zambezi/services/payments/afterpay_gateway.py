"""
Afterpay buy-now-pay-later adapter.

Afterpay splits the order total into four fortnightly instalments. It is
only offered for AUD orders whose total falls inside the configured
limits. The buyer completes checkout on Afterpay and is redirected back
with the checkout token, which confirm exchanges for a captured payment.
"""

import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from zambezi.core.config import AfterpayGatewayConfig
from zambezi.core.logging import get_logger, log_performance
from zambezi.core.money import CENT, format_money, format_plain, to_decimal
from zambezi.database.models import GatewayName, Order, Payment
from zambezi.services.invoices.service import InvoiceService
from zambezi.services.orders.updater import OrderStateUpdater, PaymentOutcome
from zambezi.services.payments.afterpay_client import AfterpayClient, afterpay_money
from zambezi.services.payments.base import PaymentGateway
from zambezi.services.payments.repository import PaymentRepository
from zambezi.services.payments.results import BusinessRuleViolation, PaymentResult

logger = get_logger(__name__)

INSTALLMENT_COUNT = 4
SUPPORTED_CURRENCY = "AUD"


def _mock_token() -> str:
    return uuid.uuid4().hex[:20]


def calculate_installments(total: Decimal) -> dict[str, Any]:
    """
    Split an order total into Afterpay instalments.

    Example:
        >>> calculate_installments(Decimal("100.00"))["installment_amount"]
        '25.00'
    """
    total = to_decimal(total)
    installment = (total / INSTALLMENT_COUNT).quantize(CENT, rounding=ROUND_HALF_UP)
    return {
        "total": format_plain(total),
        "installment_count": INSTALLMENT_COUNT,
        "installment_amount": format_plain(installment),
        "installment_formatted": format_money(installment),
        "frequency": "fortnightly",
    }


class AfterpayGateway(PaymentGateway):
    gateway_name = GatewayName.AFTERPAY

    initiate_failure_message = "Failed to initialize Afterpay payment."
    confirm_failure_message = "Failed to capture Afterpay payment."

    def __init__(
        self,
        session: AsyncSession,
        payments: PaymentRepository,
        invoices: InvoiceService,
        orders: OrderStateUpdater,
        config: AfterpayGatewayConfig,
        client: Optional[AfterpayClient] = None,
    ):
        super().__init__(session, payments, invoices, orders)
        self.config = config
        self.client = client

    def is_enabled(self) -> bool:
        return self.config.enabled and self.client is not None

    def check_eligibility(self, total: Decimal, currency: str) -> Optional[str]:
        """Return the reason Afterpay cannot be used, or None when it can."""
        if currency.upper() != SUPPORTED_CURRENCY:
            return "Afterpay is only available for AUD payments."
        if not self.config.min_amount <= to_decimal(total) <= self.config.max_amount:
            return (
                f"Afterpay is available for orders between "
                f"{format_money(self.config.min_amount)} and {format_money(self.config.max_amount)}."
            )
        return None

    def calculate_installments(self, total: Decimal) -> dict[str, Any]:
        return calculate_installments(total)

    async def _initiate(self, order: Order, extra: dict[str, Any]) -> PaymentResult:
        reason = self.check_eligibility(order.total, order.currency)
        if reason:
            raise BusinessRuleViolation(reason, order_total=str(order.total), currency=order.currency)

        confirm_url = (
            extra.get("return_url")
            or f"{self.config.frontend_url}/checkout/confirm?gateway=afterpay"
        )
        cancel_url = extra.get("cancel_url") or f"{self.config.frontend_url}/checkout/payment"

        if self.is_enabled():
            with log_performance(logger, "afterpay.create_checkout", order_id=order.id):
                checkout = await self.client.create_checkout(
                    self._checkout_payload(order, confirm_url, cancel_url)
                )
            token = checkout["token"]
            redirect_url = checkout.get("redirectCheckoutUrl")
            expires = checkout.get("expires")
        else:
            token = f"AP_MOCK_{_mock_token()}"
            redirect_url = str(
                httpx.URL(confirm_url).copy_merge_params({"orderToken": token, "status": "SUCCESS"})
            )
            expires = None

        payment = await self._start_payment(
            order,
            token,
            {"checkout_token": token, "expires": expires},
        )
        invoice = await self.invoices.generate_from_order(order)

        return PaymentResult.ok(
            payment_id=payment.id,
            checkout_token=token,
            redirect_url=redirect_url,
            installments=self.calculate_installments(order.total),
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
        )

    def _checkout_payload(self, order: Order, confirm_url: str, cancel_url: str) -> dict[str, Any]:
        given_names, _, surname = (order.customer_name or "").strip().partition(" ")
        return {
            "amount": afterpay_money(order.total, order.currency),
            "consumer": {
                "email": order.customer_email,
                "givenNames": given_names,
                "surname": surname or given_names,
            },
            "merchant": {
                "redirectConfirmUrl": confirm_url,
                "redirectCancelUrl": cancel_url,
            },
            "merchantReference": order.order_number,
            "shippingAmount": afterpay_money(order.delivery_fee, order.currency),
            "items": [
                {
                    "name": item.product_name,
                    "sku": item.product_sku,
                    "quantity": item.quantity,
                    "price": afterpay_money(item.unit_price, order.currency),
                }
                for item in order.items
            ],
        }

    async def _confirm(self, payment: Payment, data: dict[str, Any]) -> PaymentResult:
        if str(data.get("status") or "").upper() == "CANCELLED":
            await self._fail_payment(payment, {"afterpay_status": "CANCELLED"})
            return PaymentResult.soft_fail("Afterpay payment was cancelled.", payment_id=payment.id)

        token = payment.transaction_id
        if self.is_enabled():
            with log_performance(logger, "afterpay.capture_payment", payment_id=payment.id):
                captured = await self.client.capture_payment(
                    token,
                    payment.order.order_number,
                    request_id=f"zm-capture-{payment.id}-{token}",
                )
            afterpay_status = captured.get("status")
            afterpay_order_id = captured.get("id")
        else:
            afterpay_status = "APPROVED"
            afterpay_order_id = f"AP_ORD_MOCK_{_mock_token()}"

        if afterpay_status != "APPROVED":
            await self._fail_payment(payment, {"afterpay_status": afterpay_status})
            return PaymentResult.soft_fail(
                "Afterpay payment was declined.",
                payment_id=payment.id,
                status=afterpay_status,
            )

        payment.transaction_id = str(afterpay_order_id)
        await self._complete_payment(
            payment,
            PaymentOutcome.CAPTURED,
            {
                "afterpay_order_id": afterpay_order_id,
                "afterpay_status": afterpay_status,
                "checkout_token": token,
            },
        )
        return PaymentResult.ok(
            message="Payment captured successfully.",
            payment_id=payment.id,
            afterpay_order_id=afterpay_order_id,
        )

    async def _refund(self, payment: Payment, amount: Decimal) -> dict[str, Any]:
        if not self.is_enabled():
            return {"refund_id": f"AP_REF_MOCK_{_mock_token()}"}

        afterpay_order_id = payment.response_value("afterpay_order_id") or payment.transaction_id
        refund = await self.client.refund(
            afterpay_order_id,
            amount,
            payment.currency,
            merchant_reference=f"{payment.order.order_number}-REFUND",
            request_id=f"zm-refund-{payment.id}-{len(self._known_refund_ids(payment)) + 1}",
        )
        return {"refund_id": refund.get("refundId")}

    async def _process_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
        headers: dict[str, str],
    ) -> PaymentResult:
        # Afterpay outcomes arrive through the redirect and confirm call
        logger.info("Afterpay webhook received", payload_bytes=len(payload))
        return PaymentResult.ok(message="Webhook received.")
