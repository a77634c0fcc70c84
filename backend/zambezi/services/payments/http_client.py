"""
Shared async REST client for payment providers without an SDK.

PayPal and Afterpay are called over plain HTTPS with ``httpx``. This base
class adds bounded timeouts, request correlation headers, exponential
backoff for transport errors, 429 and 5xx responses, and maps HTTP failures
onto the gateway client exceptions.
"""

import asyncio
from typing import Any, Optional

import httpx

from zambezi.core.logging import get_logger, get_request_id
from zambezi.services.payments.exceptions import (
    GatewayAuthenticationError,
    GatewayClientError,
    GatewayConnectionError,
    GatewayPaymentError,
    GatewayRateLimitError,
)

logger = get_logger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class RestGatewayClient:
    """
    Base class for provider REST clients.

    Subclasses call :meth:`_request` and get back decoded JSON. An
    ``httpx.AsyncClient`` may be injected (tests pass one built on
    ``httpx.MockTransport``); otherwise one is created on first use and
    closed by :meth:`aclose`.
    """

    provider = "gateway"

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        max_retries: int = 3,
        initial_backoff: float = 0.5,
        max_backoff: float = 8.0,
        backoff_multiplier: float = 2.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.backoff_multiplier = backoff_multiplier
        self._http = http_client
        self._owns_http = http_client is None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    def _calculate_backoff(self, attempt: int) -> float:
        return min(
            self.initial_backoff * (self.backoff_multiplier**attempt),
            self.max_backoff,
        )

    def _default_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        request_id = get_request_id()
        if request_id:
            headers["X-Request-ID"] = request_id
        return headers

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        headers: Optional[dict[str, str]] = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """
        Send a request with retries and return the decoded JSON body.

        Args:
            operation: Operation name for logging
            method: HTTP method
            path: Path relative to ``base_url``
            headers: Extra request headers
            **kwargs: Passed through to ``httpx.AsyncClient.request``

        Raises:
            GatewayClientError: On a non-retryable failure or when retries
                run out
        """
        request_headers = {**self._default_headers(), **(headers or {})}
        url = f"{self.base_url}{path}"

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.http.request(
                    method,
                    url,
                    headers=request_headers,
                    **kwargs,
                )
            except httpx.TransportError as e:
                if attempt >= self.max_retries:
                    logger.error(
                        "Provider unreachable",
                        provider=self.provider,
                        operation=operation,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    raise GatewayConnectionError(
                        f"Connection error: {e}",
                        code="CONNECTION_ERROR",
                        provider_error=e,
                    ) from e
                await self._backoff(operation, attempt, error_type=type(e).__name__)
                continue

            if response.status_code in RETRYABLE_STATUS and attempt < self.max_retries:
                await self._backoff(operation, attempt, status_code=response.status_code)
                continue

            if response.is_success:
                if attempt > 0:
                    logger.info(
                        "Provider call succeeded after retry",
                        provider=self.provider,
                        operation=operation,
                        attempt=attempt,
                    )
                return self._decode(response)

            self._raise_for_status(operation, response)

        raise GatewayClientError(f"Operation failed after {self.max_retries} retries")

    async def _backoff(self, operation: str, attempt: int, **context: Any) -> None:
        delay = self._calculate_backoff(attempt)
        logger.warning(
            "Provider transient error, retrying",
            provider=self.provider,
            operation=operation,
            attempt=attempt,
            backoff_seconds=delay,
            **context,
        )
        await asyncio.sleep(delay)

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return {"raw": response.text}
        return body if isinstance(body, dict) else {"data": body}

    def _raise_for_status(self, operation: str, response: httpx.Response) -> None:
        body = self._decode(response)
        detail = self._error_detail(body) or response.reason_phrase
        status = response.status_code

        logger.error(
            "Provider request failed",
            provider=self.provider,
            operation=operation,
            status_code=status,
            detail=detail,
        )

        if status in (401, 403):
            raise GatewayAuthenticationError(
                f"Authentication failed: {detail}",
                code=str(status),
                status_code=status,
            )
        if status == 429:
            raise GatewayRateLimitError(
                f"Rate limit exceeded: {detail}",
                code=str(status),
                status_code=status,
            )
        if 400 <= status < 500:
            raise GatewayPaymentError(
                f"Request rejected: {detail}",
                code=str(status),
                status_code=status,
                body=body,
            )
        raise GatewayClientError(
            f"Provider error: {detail}",
            code=str(status),
            status_code=status,
        )

    @staticmethod
    def _error_detail(body: dict[str, Any]) -> Optional[str]:
        for key in ("message", "error_description", "errorCode", "name", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
        return None
