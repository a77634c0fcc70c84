"""
Payment repository.

Data access for payment rows and webhook claims. Methods flush but never
commit: each gateway operation commits once after all of its writes, or
rolls everything back.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from zambezi.core.logging import get_logger
from zambezi.database.models import (
    GatewayName,
    Order,
    Payment,
    PaymentStatus,
    WebhookEvent,
)

logger = get_logger(__name__)


class PaymentRepositoryError(Exception):
    """Base exception for payment repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class PaymentRepository:
    """
    Repository for payment data access.

    Attributes:
        session: Async database session for executing queries
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def start_attempt(
        self,
        order: Order,
        gateway: GatewayName,
        transaction_id: Optional[str],
        response: dict[str, Any],
    ) -> Payment:
        """
        Record a new pending payment attempt for ``order``.

        An order keeps a single payment row. A previous pending or failed
        attempt is reused and its gateway data is kept under
        ``previous_attempts`` in the response blob.

        Args:
            order: Order being paid
            gateway: Gateway handling this attempt
            transaction_id: Provider identifier for the attempt
            response: Provider data captured at initiation

        Returns:
            The pending payment

        Raises:
            PaymentRepositoryError: If the write fails
        """
        try:
            payment = order.payment
            if payment is None:
                payment = Payment(
                    gateway=gateway,
                    transaction_id=transaction_id,
                    status=PaymentStatus.PENDING,
                    amount=order.total,
                    currency=order.currency,
                    refund_amount=Decimal("0.00"),
                    gateway_response=dict(response),
                )
                payment.order = order
                self.session.add(payment)
            else:
                previous = list(payment.response_value("previous_attempts", []))
                previous.append(
                    {
                        "gateway": payment.gateway.value,
                        "transaction_id": payment.transaction_id,
                        "status": payment.status.value,
                        "superseded_at": datetime.now(timezone.utc).isoformat(),
                    }
                )
                payment.gateway = gateway
                payment.transaction_id = transaction_id
                payment.status = PaymentStatus.PENDING
                payment.amount = order.total
                payment.currency = order.currency
                payment.gateway_response = {**response, "previous_attempts": previous}

            await self.session.flush()

            logger.info(
                "Payment attempt recorded",
                payment_id=payment.id,
                order_id=order.id,
                gateway=gateway.value,
                transaction_id=transaction_id,
            )
            return payment

        except IntegrityError as e:
            logger.error(
                "Payment attempt failed - integrity error",
                order_id=order.id,
                transaction_id=transaction_id,
                error=str(e),
            )
            raise PaymentRepositoryError(
                "Payment creation failed - duplicate or constraint violation",
                order_id=order.id,
                error=str(e),
            ) from e
        except SQLAlchemyError as e:
            logger.error(
                "Payment attempt failed - database error",
                order_id=order.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PaymentRepositoryError(
                "Payment creation failed",
                order_id=order.id,
                error=str(e),
            ) from e

    async def get_payment_by_id(self, payment_id: int) -> Optional[Payment]:
        return await self._one(select(Payment).where(Payment.id == payment_id), payment_id=payment_id)

    async def get_payment_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        return await self._one(
            select(Payment).where(Payment.transaction_id == transaction_id),
            transaction_id=transaction_id,
        )

    async def find_by_response_value(
        self,
        gateway: GatewayName,
        key: str,
        value: str,
    ) -> Optional[Payment]:
        """
        Find a payment by a value stored in its gateway response.

        Used when a webhook refers to a provider id other than the one saved
        as ``transaction_id`` (e.g. a PayPal capture id).
        """
        stmt = (
            select(Payment)
            .where(
                Payment.gateway == gateway,
                Payment.gateway_response[key].as_string() == value,
            )
            .limit(1)
        )
        return await self._one(stmt, gateway=gateway.value, key=key, value=value)

    async def claim_webhook_event(self, provider: str, event_id: str, event_type: str) -> bool:
        """
        Record a webhook delivery as processed.

        The claim shares the caller's transaction, so a delivery that fails
        later is rolled back and can be redelivered.

        Returns:
            False if the event was already processed
        """
        try:
            async with self.session.begin_nested():
                self.session.add(
                    WebhookEvent(provider=provider, event_id=event_id, event_type=event_type)
                )
            return True
        except IntegrityError:
            logger.info(
                "Duplicate webhook delivery ignored",
                provider=provider,
                event_id=event_id,
                event_type=event_type,
            )
            return False
        except SQLAlchemyError as e:
            raise PaymentRepositoryError(
                "Failed to record webhook event",
                provider=provider,
                event_id=event_id,
                error=str(e),
            ) from e

    async def flush(self) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            raise PaymentRepositoryError("Failed to write payment changes", error=str(e)) from e

    async def _one(self, stmt: Any, **context: Any) -> Optional[Payment]:
        try:
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to retrieve payment",
                error=str(e),
                error_type=type(e).__name__,
                **context,
            )
            raise PaymentRepositoryError(
                "Failed to retrieve payment",
                error=str(e),
                **context,
            ) from e
