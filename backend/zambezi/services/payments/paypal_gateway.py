"""
PayPal Checkout (Orders v2) adapter.

Initiation creates a PayPal order and hands back the buyer approval URL.
After approval the frontend calls confirm, which captures the order.
Capture and refund outcomes also arrive as webhooks.
"""

import uuid
from decimal import Decimal
from typing import Any, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from zambezi.core.config import PayPalGatewayConfig
from zambezi.core.logging import get_logger, log_performance
from zambezi.core.money import to_decimal
from zambezi.database.models import GatewayName, Order, Payment
from zambezi.services.invoices.service import InvoiceService
from zambezi.services.orders.updater import OrderStateUpdater, PaymentOutcome
from zambezi.services.payments.base import PaymentGateway, event_amount, event_section
from zambezi.services.payments.paypal_client import PayPalClient, approve_link, first_capture
from zambezi.services.payments.repository import PaymentRepository
from zambezi.services.payments.results import (
    BusinessRuleViolation,
    PaymentNotFound,
    PaymentResult,
    ProviderError,
    WebhookUnverified,
)

logger = get_logger(__name__)


def _mock_token() -> str:
    return uuid.uuid4().hex[:17].upper()


def _with_query(url: str, **params: str) -> str:
    return str(httpx.URL(url).copy_merge_params(params))


class PayPalGateway(PaymentGateway):
    gateway_name = GatewayName.PAYPAL
    signature_header = "paypal-transmission-sig"

    initiate_failure_message = "Failed to initialize PayPal payment."
    confirm_failure_message = "Failed to capture PayPal payment."

    def __init__(
        self,
        session: AsyncSession,
        payments: PaymentRepository,
        invoices: InvoiceService,
        orders: OrderStateUpdater,
        config: PayPalGatewayConfig,
        client: Optional[PayPalClient] = None,
    ):
        super().__init__(session, payments, invoices, orders)
        self.config = config
        self.client = client

    def is_enabled(self) -> bool:
        return self.config.enabled and self.client is not None

    async def _initiate(self, order: Order, extra: dict[str, Any]) -> PaymentResult:
        return_url = extra.get("return_url") or f"{self.config.frontend_url}/checkout/confirm"
        cancel_url = extra.get("cancel_url") or f"{self.config.frontend_url}/checkout/payment"

        if self.is_enabled():
            with log_performance(logger, "paypal.create_order", order_id=order.id):
                paypal_order = await self.client.create_order(
                    reference_id=order.order_number,
                    amount=order.total,
                    currency=order.currency,
                    description=f"Zambezi Meats Order {order.order_number}",
                    return_url=return_url,
                    cancel_url=cancel_url,
                    brand_name=self.config.brand_name,
                    request_id=self._idempotency_key(order, "order"),
                )
            paypal_order_id = paypal_order["id"]
            paypal_status = paypal_order.get("status")
            approve_url = approve_link(paypal_order)
            if not approve_url:
                raise ProviderError(
                    self.initiate_failure_message,
                    detail="PayPal did not return an approval link",
                    paypal_order_id=paypal_order_id,
                )
        else:
            paypal_order_id = f"PP_MOCK_{_mock_token()}"
            paypal_status = "CREATED"
            approve_url = _with_query(return_url, token=paypal_order_id, gateway="paypal")

        payment = await self._start_payment(
            order,
            paypal_order_id,
            {"paypal_order_id": paypal_order_id, "paypal_status": paypal_status},
        )
        invoice = await self.invoices.generate_from_order(order)

        return PaymentResult.ok(
            payment_id=payment.id,
            paypal_order_id=paypal_order_id,
            approve_url=approve_url,
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
        )

    async def _confirm(self, payment: Payment, data: dict[str, Any]) -> PaymentResult:
        if self.is_enabled():
            with log_performance(logger, "paypal.capture_order", payment_id=payment.id):
                captured = await self.client.capture_order(
                    payment.transaction_id,
                    request_id=f"zm-capture-{payment.id}-{payment.transaction_id}",
                )
            paypal_status = captured.get("status")
            capture = first_capture(captured)
            capture_id = capture.get("id")
            payer_email = (captured.get("payer") or {}).get("email_address")
        else:
            paypal_status = "COMPLETED"
            capture_id = f"CAP_MOCK_{_mock_token()}"
            payer_email = None

        if paypal_status == "COMPLETED":
            await self._complete_payment(
                payment,
                PaymentOutcome.CAPTURED,
                {
                    "capture_id": capture_id,
                    "paypal_status": paypal_status,
                    "payer_email": payer_email,
                },
            )
            return PaymentResult.ok(
                message="Payment captured successfully.",
                payment_id=payment.id,
                capture_id=capture_id,
            )

        payment.merge_gateway_response({"paypal_status": paypal_status})
        await self.payments.flush()
        return PaymentResult.soft_fail(
            "Payment capture was not completed.",
            payment_id=payment.id,
            status=paypal_status,
        )

    async def _refund(self, payment: Payment, amount: Decimal) -> dict[str, Any]:
        capture_id = payment.response_value("capture_id")
        if not capture_id:
            raise BusinessRuleViolation("No capture ID found for refund.", payment_id=payment.id)

        if not self.is_enabled():
            return {"refund_id": f"REF_MOCK_{_mock_token()}"}

        refund = await self.client.refund_capture(
            capture_id,
            amount,
            payment.currency,
            request_id=f"zm-refund-{payment.id}-{len(self._known_refund_ids(payment)) + 1}",
        )
        return {"refund_id": refund.get("id"), "refund_status": refund.get("status")}

    async def _verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
        headers: dict[str, str],
    ) -> dict[str, Any]:
        event = self._parse_payload(payload)

        if self.config.webhook_id and self.client is not None:
            verified = await self.client.verify_webhook_signature(
                headers, event, self.config.webhook_id
            )
            if not verified:
                raise WebhookUnverified("Invalid webhook signature")
        elif self.config.require_signed_webhooks:
            raise WebhookUnverified("Webhook verification is not configured")
        else:
            logger.warning("Accepting unverified PayPal webhook")
        return event

    async def _handle_event(self, event_type: str, event: dict[str, Any]) -> PaymentResult:
        resource = event_section(event, "resource")

        if event_type == "PAYMENT.CAPTURE.COMPLETED":
            payment = await self._require_payment(_related_order_id(resource))
            if payment.status.is_settled:
                return PaymentResult.ok(message="Payment already completed", payment_id=payment.id)
            await self._complete_payment(
                payment,
                PaymentOutcome.CAPTURED,
                {
                    "capture_id": resource.get("id"),
                    "paypal_status": resource.get("status"),
                    "webhook_event": event_type,
                },
            )
            return PaymentResult.ok(message="Payment completed", payment_id=payment.id)

        if event_type == "PAYMENT.CAPTURE.DENIED":
            payment = await self._payment_for_capture(resource.get("id"), resource)
            await self._fail_payment(
                payment,
                {"paypal_status": resource.get("status"), "webhook_event": event_type},
            )
            return PaymentResult.ok(message="Payment failure recorded", payment_id=payment.id)

        if event_type == "PAYMENT.CAPTURE.REFUNDED":
            payment = await self._payment_for_capture(_refunded_capture_id(resource), resource)
            refund_id = resource.get("id")
            if refund_id and refund_id in self._known_refund_ids(payment):
                return PaymentResult.ok(message="Refund already recorded", payment_id=payment.id)

            refunded = event_amount(event_section(resource, "amount").get("value", "0"))
            await self._record_provider_refund(
                payment,
                to_decimal(payment.refund_amount or 0) + refunded,
                {"paypal_refund_id": refund_id, "webhook_event": event_type},
            )
            return PaymentResult.ok(message="Refund recorded", payment_id=payment.id)

        logger.info("Unhandled PayPal event", event_type=event_type)
        return PaymentResult.ok(message=f"Unhandled event type: {event_type}")

    async def _payment_for_capture(
        self,
        capture_id: Any,
        resource: dict[str, Any],
    ) -> Payment:
        payment = None
        if isinstance(capture_id, str) and capture_id:
            payment = await self.payments.find_by_response_value(
                GatewayName.PAYPAL, "capture_id", capture_id
            )
        if payment is None:
            order_id = _related_order_id(resource)
            if isinstance(order_id, str) and order_id:
                payment = await self.payments.get_payment_by_transaction_id(order_id)
        if payment is None:
            raise PaymentNotFound("Payment not found", capture_id=capture_id)
        return payment


def _related_ids(resource: dict[str, Any]) -> dict[str, Any]:
    return event_section(event_section(resource, "supplementary_data"), "related_ids")


def _related_order_id(resource: dict[str, Any]) -> Optional[str]:
    return _related_ids(resource).get("order_id")


def _refunded_capture_id(resource: dict[str, Any]) -> Optional[str]:
    """A refund resource links back to its capture with ``rel: up``."""
    links = resource.get("links") or []
    if not isinstance(links, list):
        raise WebhookUnverified("Invalid webhook payload", detail="links is not a list")
    for link in links:
        if isinstance(link, dict) and link.get("rel") == "up":
            return str(link.get("href", "")).rstrip("/").rsplit("/", 1)[-1]
    return _related_ids(resource).get("capture_id")
