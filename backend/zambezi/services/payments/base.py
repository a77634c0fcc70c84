"""
Gateway adapter contract and shared transaction handling.

Every provider adapter subclasses :class:`PaymentGateway` and implements a
few provider hooks. The public operations defined here own the
transaction boundary: the provider is called first, local writes follow,
and a single commit ends the operation. Any exception rolls the session
back and is turned into a failed :class:`PaymentResult`.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, ClassVar, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from zambezi.core.logging import checkout_context, get_logger
from zambezi.core.money import format_money, from_minor_units, to_decimal
from zambezi.database.models import (
    GatewayName,
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
)
from zambezi.services.invoices.repository import InvoiceRepositoryError
from zambezi.services.invoices.service import InvoiceService, InvoiceStateError
from zambezi.services.orders.state_machine import StateTransitionError
from zambezi.services.orders.updater import OrderStateUpdater, PaymentOutcome
from zambezi.services.payments.exceptions import GatewayClientError
from zambezi.services.payments.repository import (
    PaymentRepository,
    PaymentRepositoryError,
)
from zambezi.services.payments.results import (
    BusinessRuleViolation,
    PaymentError,
    PaymentNotFound,
    PaymentResult,
    ProviderError,
    WebhookUnverified,
)

logger = get_logger(__name__)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def event_section(container: Mapping[str, Any], key: str) -> dict[str, Any]:
    """
    Return a nested object from a webhook event, empty when absent.

    Raises:
        WebhookUnverified: If the value is present but not an object
    """
    value = container.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise WebhookUnverified("Invalid webhook payload", detail=f"{key} is not an object")
    return value


def event_amount(value: Any, minor_units: bool = False) -> Decimal:
    """
    Parse a money amount from a webhook event.

    Raises:
        WebhookUnverified: If the amount is not a finite number
    """
    try:
        amount = from_minor_units(value) if minor_units else to_decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise WebhookUnverified(
            "Invalid webhook payload",
            detail=f"Invalid amount: {value!r}",
        ) from e
    if not amount.is_finite():
        raise WebhookUnverified("Invalid webhook payload", detail=f"Invalid amount: {value!r}")
    return amount


class PaymentGateway(ABC):
    """
    Base class for payment gateway adapters.

    Subclasses set ``gateway_name`` and implement ``is_enabled`` plus the
    provider hooks ``_initiate``, ``_confirm``, ``_refund`` and, for
    providers that send webhooks, ``_handle_event``. When ``is_enabled``
    is false the hooks fabricate provider identifiers instead of calling
    out; every local write still happens and results are flagged ``mock``.
    """

    gateway_name: ClassVar[GatewayName]
    signature_header: ClassVar[Optional[str]] = None

    initiate_failure_message: ClassVar[str] = "Failed to initialize payment. Please try again."
    confirm_failure_message: ClassVar[str] = "Failed to confirm payment."
    refund_failure_message: ClassVar[str] = "Failed to process refund."
    webhook_failure_message: ClassVar[str] = "Webhook processing failed."

    def __init__(
        self,
        session: AsyncSession,
        payments: PaymentRepository,
        invoices: InvoiceService,
        orders: OrderStateUpdater,
    ):
        self.session = session
        self.payments = payments
        self.invoices = invoices
        self.orders = orders

    @abstractmethod
    def is_enabled(self) -> bool:
        """True when live provider credentials are configured."""

    # Public contract

    async def initiate_payment(
        self,
        order: Order,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> PaymentResult:
        """
        Start a payment for ``order``.

        Creates (or resets) the order's pending payment, prepares the
        provider side and issues the order's invoice.
        """
        return await self._run(
            "initiate",
            self.initiate_failure_message,
            lambda: self._process_initiate(order, dict(extra or {})),
            order_id=order.id,
            order_number=order.order_number,
        )

    async def confirm_payment(
        self,
        payment: Payment,
        data: Optional[Mapping[str, Any]] = None,
    ) -> PaymentResult:
        """Finalize a previously initiated payment (capture or collection)."""
        return await self._run(
            "confirm",
            self.confirm_failure_message,
            lambda: self._process_confirm(payment, dict(data or {})),
            order_id=payment.order_id,
            payment_id=payment.id,
        )

    async def refund(
        self,
        payment: Payment,
        amount: Optional[Decimal] = None,
    ) -> PaymentResult:
        """Refund ``amount``, or the whole remaining balance when omitted."""
        return await self._run(
            "refund",
            self.refund_failure_message,
            lambda: self._process_refund(payment, amount),
            order_id=payment.order_id,
            payment_id=payment.id,
        )

    async def handle_webhook(
        self,
        payload: bytes,
        signature: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> PaymentResult:
        """Verify and apply a provider callback."""
        return await self._run(
            "webhook",
            self.webhook_failure_message,
            lambda: self._process_webhook(payload, signature, dict(headers or {})),
        )

    # Provider hooks

    @abstractmethod
    async def _initiate(self, order: Order, extra: dict[str, Any]) -> PaymentResult:
        ...

    @abstractmethod
    async def _confirm(self, payment: Payment, data: dict[str, Any]) -> PaymentResult:
        ...

    @abstractmethod
    async def _refund(self, payment: Payment, amount: Decimal) -> dict[str, Any]:
        """Perform the provider refund and return data to merge into the response."""

    async def _verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
        headers: dict[str, str],
    ) -> dict[str, Any]:
        """Authenticate and decode a webhook; providers without webhooks keep this."""
        return self._parse_payload(payload)

    async def _handle_event(self, event_type: str, event: dict[str, Any]) -> PaymentResult:
        return PaymentResult.ok(message="Webhook received.")

    def _event_identity(self, event: dict[str, Any]) -> tuple[Optional[str], str]:
        return event.get("id"), str(event.get("type") or event.get("event_type") or "")

    def refund_message(self, amount: Decimal) -> str:
        return "Refund processed successfully."

    # Shared steps

    async def _run(
        self,
        operation: str,
        failure_message: str,
        step: Callable[[], Awaitable[PaymentResult]],
        **ids: Any,
    ) -> PaymentResult:
        mock = not self.is_enabled()
        with checkout_context(gateway=self.gateway_name.value, operation=operation, **ids):
            try:
                result = await step()
                await self.session.commit()
            except PaymentError as e:
                await self.session.rollback()
                self._log_failure(operation, e)
                result = PaymentResult.fail(e)
            except GatewayClientError as e:
                await self.session.rollback()
                error = ProviderError(failure_message, detail=e.message, code=e.code)
                self._log_failure(operation, error)
                result = PaymentResult.fail(error)
            except (
                PaymentRepositoryError,
                InvoiceRepositoryError,
                InvoiceStateError,
                StateTransitionError,
            ) as e:
                await self.session.rollback()
                error = ProviderError(failure_message, detail=e.message)
                self._log_failure(operation, error)
                result = PaymentResult.fail(error)
            except SQLAlchemyError as e:
                await self.session.rollback()
                error = ProviderError(failure_message, detail=str(e))
                self._log_failure(operation, error)
                result = PaymentResult.fail(error)
            except Exception as e:
                await self.session.rollback()
                logger.exception(
                    "Unexpected gateway failure",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result = PaymentResult.fail(ProviderError(failure_message, detail=str(e)))

        result.mock = mock
        return result

    def _log_failure(self, operation: str, error: PaymentError) -> None:
        log = logger.error if isinstance(error, ProviderError) else logger.warning
        log(
            "Gateway operation failed",
            error_kind=error.kind.value,
            message=error.message,
            detail=error.detail,
            **error.context,
        )

    async def _process_initiate(self, order: Order, extra: dict[str, Any]) -> PaymentResult:
        if order.status != OrderStatus.PENDING:
            raise BusinessRuleViolation(
                "This order is no longer awaiting payment.",
                order_status=order.status.value,
            )
        existing = order.payment
        if existing is not None and existing.status.is_settled:
            raise BusinessRuleViolation(
                "This order has already been paid.",
                payment_id=existing.id,
            )
        return await self._initiate(order, extra)

    async def _process_confirm(self, payment: Payment, data: dict[str, Any]) -> PaymentResult:
        self._ensure_own_payment(payment)
        if payment.status == PaymentStatus.COMPLETED:
            logger.info("Payment already confirmed", payment_id=payment.id)
            return PaymentResult.ok(
                message="Payment already confirmed.",
                payment_id=payment.id,
                already_confirmed=True,
            )
        if payment.status == PaymentStatus.REFUNDED:
            raise BusinessRuleViolation(
                "Refunded payments cannot be confirmed.",
                payment_id=payment.id,
            )
        return await self._confirm(payment, data)

    async def _process_refund(
        self,
        payment: Payment,
        amount: Optional[Decimal],
    ) -> PaymentResult:
        self._ensure_own_payment(payment)
        refund_amount = self._validate_refund(payment, amount)

        refund_data = await self._refund(payment, refund_amount)

        payment.status = PaymentStatus.REFUNDED
        payment.refund_amount = to_decimal(payment.refund_amount or 0) + refund_amount
        refunds = list(payment.response_value("refunds", []))
        refunds.append({**refund_data, "amount": str(refund_amount), "refunded_at": utc_timestamp()})
        payment.merge_gateway_response(
            {
                **refund_data,
                "refund_amount": str(payment.refund_amount),
                "refunded_at": utc_timestamp(),
                "refunds": refunds,
            }
        )
        await self.payments.flush()
        self.orders.apply(payment, PaymentOutcome.REFUNDED)

        logger.info(
            "Payment refunded",
            payment_id=payment.id,
            refund_amount=str(refund_amount),
            total_refunded=str(payment.refund_amount),
        )
        return PaymentResult.ok(
            message=self.refund_message(refund_amount),
            payment_id=payment.id,
            refund_id=refund_data.get("refund_id"),
            refund_amount=str(refund_amount),
        )

    async def _process_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
        headers: dict[str, str],
    ) -> PaymentResult:
        event = await self._verify_webhook(payload, signature, headers)
        event_id, event_type = self._event_identity(event)

        if event_id and not await self.payments.claim_webhook_event(
            self.gateway_name.value, event_id, event_type
        ):
            return PaymentResult.ok(
                message="Event already processed",
                event_id=event_id,
                duplicate=True,
            )

        with checkout_context(event_id=event_id, event_type=event_type):
            return await self._handle_event(event_type, event)

    def _validate_refund(self, payment: Payment, amount: Optional[Decimal]) -> Decimal:
        if not payment.can_refund:
            raise BusinessRuleViolation(
                "Only completed payments can be refunded.",
                payment_id=payment.id,
                payment_status=payment.status.value,
            )
        remaining = to_decimal(payment.refundable_amount)
        refund_amount = remaining if amount is None else to_decimal(amount)
        if refund_amount <= 0:
            raise BusinessRuleViolation(
                "Refund amount must be greater than zero.",
                payment_id=payment.id,
            )
        if refund_amount > remaining:
            raise BusinessRuleViolation(
                f"Refund amount cannot exceed {format_money(remaining)}.",
                payment_id=payment.id,
                requested=str(refund_amount),
            )
        return refund_amount

    def _ensure_own_payment(self, payment: Payment) -> None:
        if payment.gateway != self.gateway_name:
            raise BusinessRuleViolation(
                "Payment was not made with this payment method.",
                payment_id=payment.id,
                payment_gateway=payment.gateway.value,
            )

    async def _start_payment(
        self,
        order: Order,
        transaction_id: Optional[str],
        response: dict[str, Any],
    ) -> Payment:
        return await self.payments.start_attempt(order, self.gateway_name, transaction_id, response)

    async def _complete_payment(
        self,
        payment: Payment,
        outcome: PaymentOutcome,
        response: Mapping[str, Any],
    ) -> None:
        """Mark a payment completed and apply the order and invoice side."""
        payment.status = PaymentStatus.COMPLETED
        payment.merge_gateway_response({**response, "completed_at": utc_timestamp()})
        await self.payments.flush()
        self.orders.apply(payment, outcome)
        logger.info("Payment completed", payment_id=payment.id, outcome=outcome.value)

    async def _fail_payment(self, payment: Payment, response: Mapping[str, Any]) -> None:
        if payment.status.is_settled:
            logger.warning(
                "Ignored failure for settled payment",
                payment_id=payment.id,
            )
            return
        payment.status = PaymentStatus.FAILED
        payment.merge_gateway_response({**response, "failed_at": utc_timestamp()})
        await self.payments.flush()
        self.orders.apply(payment, PaymentOutcome.FAILED)

    async def _record_provider_refund(
        self,
        payment: Payment,
        total_refunded: Decimal,
        response: Mapping[str, Any],
    ) -> None:
        """
        Apply a refund reported by the provider.

        ``total_refunded`` is the cumulative amount the provider reports, so
        replays and refunds already recorded locally never double count.
        """
        refunded = min(max(to_decimal(payment.refund_amount or 0), total_refunded), payment.amount)
        payment.status = PaymentStatus.REFUNDED
        payment.refund_amount = refunded
        payment.merge_gateway_response(
            {**response, "refund_amount": str(refunded), "refunded_at": utc_timestamp()}
        )
        await self.payments.flush()
        self.orders.apply(payment, PaymentOutcome.REFUNDED)
        logger.info("Provider refund recorded", payment_id=payment.id, total_refunded=str(refunded))

    def _known_refund_ids(self, payment: Payment) -> set[str]:
        return {
            str(refund.get("refund_id"))
            for refund in payment.response_value("refunds", [])
            if refund.get("refund_id")
        }

    async def _require_payment(self, transaction_id: Any) -> Payment:
        payment = None
        if isinstance(transaction_id, str) and transaction_id:
            payment = await self.payments.get_payment_by_transaction_id(transaction_id)
        if payment is None:
            raise PaymentNotFound("Payment not found", transaction_id=transaction_id)
        return payment

    def _attempt_number(self, order: Order) -> int:
        if order.payment is None:
            return 1
        return len(order.payment.response_value("previous_attempts", [])) + 2

    def _idempotency_key(self, order: Order, action: str) -> str:
        return f"zm-{order.order_number}-{action}-{self._attempt_number(order)}"

    @staticmethod
    def _parse_payload(payload: bytes) -> dict[str, Any]:
        try:
            event = json.loads(payload)
        except ValueError as e:
            raise WebhookUnverified("Invalid webhook payload", detail=str(e)) from e
        if not isinstance(event, dict):
            raise WebhookUnverified("Invalid webhook payload")
        return event
