"""
Stripe API client wrapper with error handling and retry logic.

This module wraps the Stripe SDK calls used at checkout (payment intents,
refunds and webhook verification) with exponential backoff for transient
failures and maps Stripe errors onto the shared gateway client exceptions.
"""

import time
from typing import Any, Callable, Optional

import stripe

from zambezi.core.logging import get_logger
from zambezi.services.payments.exceptions import (
    GatewayAuthenticationError,
    GatewayClientError,
    GatewayConnectionError,
    GatewayPaymentError,
    GatewayRateLimitError,
    WebhookSignatureError,
)

logger = get_logger(__name__)


class StripeClient:
    """
    Stripe API client with error handling and retry logic.

    The API key is passed per request instead of being set globally on the
    ``stripe`` module so that separate clients never share credentials.
    """

    def __init__(
        self,
        api_key: str,
        max_retries: int = 3,
        initial_backoff: float = 1.0,
        max_backoff: float = 32.0,
        backoff_multiplier: float = 2.0,
    ):
        """
        Initialize Stripe client.

        Args:
            api_key: Stripe secret API key
            max_retries: Maximum number of retry attempts
            initial_backoff: Initial backoff delay in seconds
            max_backoff: Maximum backoff delay in seconds
            backoff_multiplier: Backoff multiplier for exponential backoff
        """
        self.api_key = api_key
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.backoff_multiplier = backoff_multiplier

        # Retries are handled here, not by the SDK
        stripe.max_network_retries = 0

    def _calculate_backoff(self, attempt: int) -> float:
        return min(
            self.initial_backoff * (self.backoff_multiplier**attempt),
            self.max_backoff,
        )

    def _should_retry(self, error: stripe.StripeError, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        return isinstance(
            error,
            (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError),
        )

    def _execute_with_retry(
        self,
        operation: str,
        func: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Execute a Stripe API call with exponential backoff retry logic.

        Args:
            operation: Operation name for logging
            func: Stripe API function to execute
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            Result from the Stripe API call

        Raises:
            GatewayClientError: If the operation fails or retries run out
        """
        last_error: Optional[stripe.StripeError] = None

        for attempt in range(self.max_retries + 1):
            try:
                result = func(*args, api_key=self.api_key, **kwargs)
                if attempt > 0:
                    logger.info(
                        "Stripe operation succeeded after retry",
                        operation=operation,
                        attempt=attempt,
                    )
                return result

            except stripe.AuthenticationError as e:
                logger.error("Stripe authentication error", operation=operation, error=str(e))
                raise GatewayAuthenticationError(
                    f"Authentication failed: {e.user_message or str(e)}",
                    code=e.code,
                    provider_error=e,
                ) from e

            except stripe.CardError as e:
                logger.warning(
                    "Stripe card error",
                    operation=operation,
                    code=e.code,
                    decline_code=getattr(e, "decline_code", None),
                )
                raise GatewayPaymentError(
                    f"Card error: {e.user_message or str(e)}",
                    code=e.code,
                    provider_error=e,
                ) from e

            except (stripe.InvalidRequestError, stripe.IdempotencyError) as e:
                logger.error(
                    "Stripe rejected request",
                    operation=operation,
                    error=str(e),
                    code=e.code,
                )
                raise GatewayPaymentError(
                    f"Invalid request: {e.user_message or str(e)}",
                    code=e.code,
                    provider_error=e,
                    param=getattr(e, "param", None),
                ) from e

            except (stripe.RateLimitError, stripe.APIConnectionError, stripe.APIError) as e:
                last_error = e
                if not self._should_retry(e, attempt):
                    logger.error(
                        "Stripe operation failed",
                        operation=operation,
                        error=str(e),
                        error_type=type(e).__name__,
                        attempt=attempt,
                    )
                    if isinstance(e, stripe.RateLimitError):
                        raise GatewayRateLimitError(
                            f"Rate limit exceeded: {e.user_message or str(e)}",
                            code=e.code,
                            provider_error=e,
                        ) from e
                    if isinstance(e, stripe.APIConnectionError):
                        raise GatewayConnectionError(
                            f"Connection error: {e.user_message or str(e)}",
                            code=e.code,
                            provider_error=e,
                        ) from e
                    raise GatewayClientError(
                        f"API error: {e.user_message or str(e)}",
                        code=e.code,
                        provider_error=e,
                    ) from e

                backoff = self._calculate_backoff(attempt)
                logger.warning(
                    "Stripe transient error, retrying",
                    operation=operation,
                    error_type=type(e).__name__,
                    attempt=attempt,
                    backoff_seconds=backoff,
                )
                time.sleep(backoff)

            except stripe.StripeError as e:
                logger.error(
                    "Unexpected Stripe error",
                    operation=operation,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise GatewayClientError(
                    f"Stripe error: {e.user_message or str(e)}",
                    code=getattr(e, "code", None),
                    provider_error=e,
                ) from e

        raise GatewayClientError(
            f"Operation failed after {self.max_retries} retries",
            provider_error=last_error,
        )

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        order_id: Optional[int] = None,
        order_number: Optional[str] = None,
        customer_email: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> stripe.PaymentIntent:
        """
        Create a Stripe payment intent.

        Args:
            amount: Payment amount in cents
            currency: Three-letter ISO currency code
            order_id: Local order id stored in intent metadata
            order_number: Public order number stored in intent metadata
            customer_email: Customer email for the receipt
            metadata: Additional metadata for the payment
            idempotency_key: Idempotency key for safe retries

        Returns:
            Stripe PaymentIntent object
        """
        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency.lower(),
            "automatic_payment_methods": {"enabled": True},
        }

        if customer_email:
            params["receipt_email"] = customer_email

        intent_metadata = dict(metadata or {})
        if order_id is not None:
            intent_metadata["order_id"] = str(order_id)
        if order_number:
            intent_metadata["order_number"] = order_number
        if intent_metadata:
            params["metadata"] = intent_metadata

        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        payment_intent = self._execute_with_retry(
            "create_payment_intent",
            stripe.PaymentIntent.create,
            **params,
        )

        logger.info(
            "Payment intent created",
            payment_intent_id=payment_intent.id,
            amount=amount,
            currency=currency,
        )
        return payment_intent

    def retrieve_payment_intent(self, payment_intent_id: str) -> stripe.PaymentIntent:
        return self._execute_with_retry(
            "retrieve_payment_intent",
            stripe.PaymentIntent.retrieve,
            payment_intent_id,
        )

    def create_refund(
        self,
        payment_intent_id: str,
        amount: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> stripe.Refund:
        """
        Refund a payment intent.

        Args:
            payment_intent_id: Stripe payment intent ID
            amount: Amount in cents, omitted for a full refund
            idempotency_key: Idempotency key for safe retries
        """
        params: dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount is not None:
            params["amount"] = amount
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        refund = self._execute_with_retry("create_refund", stripe.Refund.create, **params)

        logger.info(
            "Refund created",
            refund_id=refund.id,
            payment_intent_id=payment_intent_id,
            amount=amount,
        )
        return refund


def verify_webhook_signature(payload: bytes, signature: str, webhook_secret: str) -> None:
    """
    Verify a webhook payload against the Stripe signature header.

    Raises:
        WebhookSignatureError: If the payload or signature is invalid
    """
    if not webhook_secret:
        raise WebhookSignatureError(
            "Webhook secret is not configured",
            code="NO_WEBHOOK_SECRET",
        )

    try:
        stripe.Webhook.construct_event(payload, signature, webhook_secret)
    except ValueError as e:
        raise WebhookSignatureError(
            "Invalid webhook payload",
            code="INVALID_PAYLOAD",
        ) from e
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed", error=str(e))
        raise WebhookSignatureError(
            "Webhook signature verification failed",
            code="INVALID_SIGNATURE",
            provider_error=e,
        ) from e
