"""
PayPal REST API client.

Covers the Orders v2 checkout flow (create, capture), capture refunds and
webhook signature verification. OAuth access tokens are cached on the
client until shortly before they expire.
"""

import time
from decimal import Decimal
from typing import Any, Mapping, Optional

import httpx

from zambezi.core.logging import get_logger
from zambezi.core.money import format_plain
from zambezi.services.payments.http_client import RestGatewayClient

logger = get_logger(__name__)

# Refresh tokens this many seconds before PayPal says they expire
TOKEN_EXPIRY_MARGIN = 60

WEBHOOK_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class PayPalClient(RestGatewayClient):
    provider = "paypal"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        **kwargs: Any,
    ):
        super().__init__(base_url, **kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    async def get_access_token(self) -> str:
        """Return a cached OAuth token, fetching a new one when it lapses."""
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        body = await self._request(
            "oauth_token",
            "POST",
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=httpx.BasicAuth(self.client_id, self.client_secret),
        )
        self._access_token = body["access_token"]
        expires_in = int(body.get("expires_in", 0))
        self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
        logger.debug("PayPal access token refreshed", expires_in=expires_in)
        return self._access_token

    async def _auth_headers(self, request_id: Optional[str] = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {await self.get_access_token()}",
            "Content-Type": "application/json",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        return headers

    async def create_order(
        self,
        reference_id: str,
        amount: Decimal,
        currency: str,
        description: str,
        return_url: str,
        cancel_url: str,
        brand_name: str,
        request_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Create a CAPTURE intent order.

        Returns:
            PayPal order resource including its HATEOAS ``links``
        """
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": reference_id,
                    "description": description,
                    "amount": {
                        "currency_code": currency.upper(),
                        "value": format_plain(amount),
                    },
                }
            ],
            "application_context": {
                "brand_name": brand_name,
                "landing_page": "LOGIN",
                "shipping_preference": "NO_SHIPPING",
                "user_action": "PAY_NOW",
                "return_url": return_url,
                "cancel_url": cancel_url,
            },
        }
        return await self._request(
            "create_order",
            "POST",
            "/v2/checkout/orders",
            headers=await self._auth_headers(request_id),
            json=payload,
        )

    async def capture_order(
        self,
        paypal_order_id: str,
        request_id: Optional[str] = None,
    ) -> dict[str, Any]:
        headers = await self._auth_headers(request_id)
        headers["Prefer"] = "return=representation"
        return await self._request(
            "capture_order",
            "POST",
            f"/v2/checkout/orders/{paypal_order_id}/capture",
            headers=headers,
            json={},
        )

    async def refund_capture(
        self,
        capture_id: str,
        amount: Decimal,
        currency: str,
        request_id: Optional[str] = None,
    ) -> dict[str, Any]:
        return await self._request(
            "refund_capture",
            "POST",
            f"/v2/payments/captures/{capture_id}/refund",
            headers=await self._auth_headers(request_id),
            json={
                "amount": {
                    "currency_code": currency.upper(),
                    "value": format_plain(amount),
                }
            },
        )

    async def verify_webhook_signature(
        self,
        headers: Mapping[str, str],
        event: dict[str, Any],
        webhook_id: str,
    ) -> bool:
        """Ask PayPal whether a webhook delivery is authentic."""
        lowered = {key.lower(): value for key, value in headers.items()}
        payload: dict[str, Any] = {
            field: lowered.get(header, "") for field, header in WEBHOOK_HEADERS.items()
        }
        payload["webhook_id"] = webhook_id
        payload["webhook_event"] = event

        body = await self._request(
            "verify_webhook_signature",
            "POST",
            "/v1/notifications/verify-webhook-signature",
            headers=await self._auth_headers(),
            json=payload,
        )
        return body.get("verification_status") == "SUCCESS"


def approve_link(paypal_order: Mapping[str, Any]) -> Optional[str]:
    """Return the buyer approval URL from a PayPal order's links."""
    for link in paypal_order.get("links", []):
        if link.get("rel") in ("approve", "payer-action"):
            return link.get("href")
    return None


def first_capture(paypal_order: Mapping[str, Any]) -> dict[str, Any]:
    """Return the first capture of a captured order, or an empty dict."""
    units = paypal_order.get("purchase_units") or [{}]
    captures = (units[0].get("payments") or {}).get("captures") or [{}]
    return captures[0]
