"""
Payment provider client exceptions.

Every provider client (Stripe SDK wrapper, PayPal and Afterpay REST
clients) raises these so gateway adapters handle one hierarchy regardless
of which provider failed.
"""

from typing import Any, Optional


class GatewayClientError(Exception):
    """Base exception for payment provider client errors."""

    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        provider_error: Optional[BaseException] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.provider_error = provider_error
        self.context = context


class GatewayPaymentError(GatewayClientError):
    """The provider rejected the payment request (declined card, invalid order)."""

    pass


class GatewayAuthenticationError(GatewayClientError):
    """Credentials were rejected by the provider."""

    pass


class GatewayRateLimitError(GatewayClientError):
    """The provider throttled the request."""

    retryable = True


class GatewayConnectionError(GatewayClientError):
    """The provider could not be reached or timed out."""

    retryable = True


class WebhookSignatureError(GatewayClientError):
    """A webhook payload failed signature verification."""

    pass
