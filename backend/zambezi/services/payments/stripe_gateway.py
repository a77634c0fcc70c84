"""
Stripe card payments via payment intents.

The frontend confirms the card with Stripe.js using the ``client_secret``
returned at initiation; the backend then either polls the intent through
``confirm_payment`` or learns the outcome from a signed webhook.
"""

import asyncio
import uuid
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from zambezi.core.config import StripeGatewayConfig
from zambezi.core.logging import get_logger, log_performance
from zambezi.core.money import to_minor_units
from zambezi.database.models import GatewayName, Order, Payment
from zambezi.services.invoices.service import InvoiceService
from zambezi.services.orders.updater import OrderStateUpdater, PaymentOutcome
from zambezi.services.payments.base import PaymentGateway, event_amount, event_section
from zambezi.services.payments.exceptions import WebhookSignatureError
from zambezi.services.payments.repository import PaymentRepository
from zambezi.services.payments.results import PaymentResult, WebhookUnverified
from zambezi.services.payments.stripe_client import StripeClient, verify_webhook_signature

logger = get_logger(__name__)

MOCK_PUBLISHABLE_KEY = "pk_test_mock"


def _mock_token() -> str:
    return uuid.uuid4().hex[:24]


class StripeGateway(PaymentGateway):
    gateway_name = GatewayName.STRIPE
    signature_header = "stripe-signature"

    def __init__(
        self,
        session: AsyncSession,
        payments: PaymentRepository,
        invoices: InvoiceService,
        orders: OrderStateUpdater,
        config: StripeGatewayConfig,
        client: Optional[StripeClient] = None,
    ):
        super().__init__(session, payments, invoices, orders)
        self.config = config
        self.client = client

    def is_enabled(self) -> bool:
        return self.config.enabled and self.client is not None

    async def _initiate(self, order: Order, extra: dict[str, Any]) -> PaymentResult:
        amount_cents = to_minor_units(order.total)

        if self.is_enabled():
            with log_performance(logger, "stripe.create_payment_intent", order_id=order.id):
                intent = await asyncio.to_thread(
                    self.client.create_payment_intent,
                    amount=amount_cents,
                    currency=order.currency,
                    order_id=order.id,
                    order_number=order.order_number,
                    customer_email=order.customer_email,
                    idempotency_key=self._idempotency_key(order, "intent"),
                )
            intent_id = intent.id
            client_secret = intent.client_secret
            intent_status = intent.status
            publishable_key = self.config.publishable_key
        else:
            intent_id = f"pi_mock_{_mock_token()}"
            client_secret = f"{intent_id}_secret_{_mock_token()}"
            intent_status = "requires_payment_method"
            publishable_key = MOCK_PUBLISHABLE_KEY

        payment = await self._start_payment(
            order,
            intent_id,
            {
                "payment_intent_id": intent_id,
                "intent_status": intent_status,
                "amount_cents": amount_cents,
            },
        )
        invoice = await self.invoices.generate_from_order(order)

        return PaymentResult.ok(
            payment_id=payment.id,
            client_secret=client_secret,
            payment_intent_id=intent_id,
            publishable_key=publishable_key,
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
        )

    async def _confirm(self, payment: Payment, data: dict[str, Any]) -> PaymentResult:
        intent_id = payment.transaction_id

        if self.is_enabled():
            with log_performance(logger, "stripe.retrieve_payment_intent", payment_id=payment.id):
                intent = await asyncio.to_thread(self.client.retrieve_payment_intent, intent_id)
            intent_status = intent.status
        else:
            intent_status = "succeeded"

        if intent_status == "succeeded":
            await self._complete_payment(
                payment,
                PaymentOutcome.CAPTURED,
                {"intent_status": intent_status},
            )
            return PaymentResult.ok(
                message="Payment confirmed successfully.",
                payment_id=payment.id,
                status=payment.status.value,
            )

        payment.merge_gateway_response({"intent_status": intent_status})
        await self.payments.flush()
        return PaymentResult.soft_fail(
            "Payment not yet completed.",
            payment_id=payment.id,
            status=intent_status,
        )

    async def _refund(self, payment: Payment, amount: Decimal) -> dict[str, Any]:
        if not self.is_enabled():
            return {"refund_id": f"re_mock_{_mock_token()}"}

        already_refunded = to_minor_units(payment.refund_amount or 0)
        refund = await asyncio.to_thread(
            self.client.create_refund,
            payment.transaction_id,
            amount=to_minor_units(amount),
            idempotency_key=f"zm-refund-{payment.id}-{already_refunded}-{to_minor_units(amount)}",
        )
        return {"refund_id": refund.id, "refund_status": refund.status}

    async def _verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
        headers: dict[str, str],
    ) -> dict[str, Any]:
        if self.config.webhook_secret:
            try:
                verify_webhook_signature(payload, signature or "", self.config.webhook_secret)
            except WebhookSignatureError as e:
                raise WebhookUnverified("Invalid webhook signature", detail=e.message) from e
        elif self.config.require_signed_webhooks:
            raise WebhookUnverified("Webhook signing secret is not configured")
        else:
            logger.warning("Accepting unsigned Stripe webhook")
        return self._parse_payload(payload)

    async def _handle_event(self, event_type: str, event: dict[str, Any]) -> PaymentResult:
        obj = event_section(event_section(event, "data"), "object")

        if event_type == "payment_intent.succeeded":
            payment = await self._require_payment(obj.get("id"))
            if payment.status.is_settled:
                return PaymentResult.ok(message="Payment already completed", payment_id=payment.id)
            await self._complete_payment(
                payment,
                PaymentOutcome.CAPTURED,
                {"intent_status": obj.get("status", "succeeded"), "webhook_event": event_type},
            )
            return PaymentResult.ok(message="Payment completed", payment_id=payment.id)

        if event_type == "payment_intent.payment_failed":
            payment = await self._require_payment(obj.get("id"))
            failure = event_section(obj, "last_payment_error").get("message")
            await self._fail_payment(
                payment,
                {"failure_message": failure, "webhook_event": event_type},
            )
            return PaymentResult.ok(message="Payment failure recorded", payment_id=payment.id)

        if event_type == "charge.refunded":
            payment = await self._require_payment(obj.get("payment_intent"))
            await self._record_provider_refund(
                payment,
                event_amount(obj.get("amount_refunded", 0), minor_units=True),
                {"charge_id": obj.get("id"), "webhook_event": event_type},
            )
            return PaymentResult.ok(message="Refund recorded", payment_id=payment.id)

        logger.info("Unhandled Stripe event", event_type=event_type)
        return PaymentResult.ok(message=f"Unhandled event type: {event_type}")
