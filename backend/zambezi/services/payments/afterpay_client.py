"""Afterpay v2 REST API client (checkouts, captures, refunds)."""

from decimal import Decimal
from typing import Any, Optional

import httpx

from zambezi.core.money import format_plain
from zambezi.services.payments.http_client import RestGatewayClient


def afterpay_money(amount: Decimal, currency: str) -> dict[str, str]:
    return {"amount": format_plain(amount), "currency": currency.upper()}


class AfterpayClient(RestGatewayClient):
    provider = "afterpay"

    def __init__(
        self,
        merchant_id: str,
        secret_key: str,
        base_url: str,
        user_agent: str = "ZambeziMeats/1.0",
        **kwargs: Any,
    ):
        super().__init__(base_url, **kwargs)
        self.auth = httpx.BasicAuth(merchant_id, secret_key)
        self.user_agent = user_agent

    def _default_headers(self) -> dict[str, str]:
        headers = super()._default_headers()
        headers["User-Agent"] = self.user_agent
        return headers

    async def create_checkout(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Create a checkout.

        Returns:
            Body with ``token``, ``expires`` and ``redirectCheckoutUrl``
        """
        return await self._request(
            "create_checkout",
            "POST",
            "/v2/checkouts",
            auth=self.auth,
            json=payload,
        )

    async def capture_payment(
        self,
        token: str,
        merchant_reference: str,
        request_id: Optional[str] = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"token": token, "merchantReference": merchant_reference}
        if request_id:
            payload["requestId"] = request_id
        return await self._request(
            "capture_payment",
            "POST",
            "/v2/payments/capture",
            auth=self.auth,
            json=payload,
        )

    async def refund(
        self,
        afterpay_order_id: str,
        amount: Decimal,
        currency: str,
        merchant_reference: str,
        request_id: Optional[str] = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "amount": afterpay_money(amount, currency),
            "merchantReference": merchant_reference,
        }
        if request_id:
            payload["requestId"] = request_id
        return await self._request(
            "refund",
            "POST",
            f"/v2/payments/{afterpay_order_id}/refund",
            auth=self.auth,
            json=payload,
        )
