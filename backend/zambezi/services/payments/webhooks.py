"""
Webhook dispatch.

Routes a raw provider callback to its adapter and turns the adapter result
into the HTTP acknowledgement the provider expects. Providers retry any
non-2xx response, so only local failures worth retrying return 500.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping

from fastapi import status

from zambezi.core.logging import get_logger
from zambezi.database.models import GatewayName
from zambezi.services.payments.registry import PaymentGatewayRegistry
from zambezi.services.payments.results import (
    PaymentErrorKind,
    PaymentResult,
)

logger = get_logger(__name__)

WEBHOOK_PROVIDERS = frozenset({GatewayName.STRIPE, GatewayName.PAYPAL, GatewayName.AFTERPAY})

STATUS_BY_ERROR = {
    PaymentErrorKind.BUSINESS_RULE: status.HTTP_200_OK,
    PaymentErrorKind.NOT_FOUND: status.HTTP_200_OK,
    PaymentErrorKind.UNVERIFIED: status.HTTP_400_BAD_REQUEST,
    PaymentErrorKind.PROVIDER: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@dataclass
class WebhookResponse:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


def status_for(result: PaymentResult) -> int:
    if result.error is None:
        return status.HTTP_200_OK
    return STATUS_BY_ERROR[result.error.kind]


class WebhookDispatcher:
    def __init__(self, registry: PaymentGatewayRegistry):
        self.registry = registry

    async def dispatch(
        self,
        provider: str,
        payload: bytes,
        headers: Mapping[str, str],
    ) -> WebhookResponse:
        """
        Hand a webhook delivery to the provider's adapter.

        Args:
            provider: Provider name from the URL path
            payload: Raw request body, needed byte for byte for signatures
            headers: Request headers

        Returns:
            Status code and JSON body to send back
        """
        try:
            name = GatewayName.from_string(provider)
        except ValueError:
            name = None
        if name not in WEBHOOK_PROVIDERS:
            logger.warning("Webhook for unknown provider", provider=provider)
            return WebhookResponse(
                status.HTTP_404_NOT_FOUND,
                {"received": False, "message": f"Unknown webhook provider: {provider}"},
            )

        gateway = self.registry.get(name)
        lowered = {key.lower(): value for key, value in headers.items()}
        signature = lowered.get(gateway.signature_header) if gateway.signature_header else None

        result = await gateway.handle_webhook(payload, signature, lowered)
        status_code = status_for(result)

        logger.info(
            "Webhook dispatched",
            provider=name.value,
            status_code=status_code,
            success=result.success,
            message=result.message,
        )
        return WebhookResponse(status_code, {"received": status_code < 400, **result.to_dict()})
