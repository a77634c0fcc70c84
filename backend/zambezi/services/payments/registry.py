"""
Gateway registry.

Builds the four adapters for one database session from injected settings
and shared provider clients, and answers the storefront's "which payment
methods can I offer" query.
"""

from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from zambezi.core.config import Settings, get_settings
from zambezi.core.logging import get_logger
from zambezi.core.money import format_plain, to_decimal
from zambezi.database.models import GatewayName
from zambezi.services.invoices.service import InvoiceService
from zambezi.services.orders.state_machine import OrderStateMachine
from zambezi.services.orders.updater import OrderStateUpdater
from zambezi.services.payments.afterpay_client import AfterpayClient
from zambezi.services.payments.afterpay_gateway import AfterpayGateway, calculate_installments
from zambezi.services.payments.base import PaymentGateway
from zambezi.services.payments.cod_gateway import CashOnDeliveryGateway
from zambezi.services.payments.paypal_client import PayPalClient
from zambezi.services.payments.paypal_gateway import PayPalGateway
from zambezi.services.payments.repository import PaymentRepository
from zambezi.services.payments.stripe_client import StripeClient
from zambezi.services.payments.stripe_gateway import StripeGateway

logger = get_logger(__name__)

METHOD_DETAILS: dict[GatewayName, dict[str, Any]] = {
    GatewayName.STRIPE: {
        "name": "Credit/Debit Card",
        "description": "Pay securely with Visa, Mastercard, or American Express",
        "icon": "credit-card",
        "currencies": ["AUD", "USD"],
    },
    GatewayName.PAYPAL: {
        "name": "PayPal",
        "description": "Pay with your PayPal account",
        "icon": "paypal",
        "currencies": ["AUD", "USD"],
    },
    GatewayName.AFTERPAY: {
        "name": "Afterpay",
        "description": "Buy now, pay later in 4 interest-free installments",
        "icon": "afterpay",
        "currencies": ["AUD"],
    },
    GatewayName.COD: {
        "name": "Cash on Delivery",
        "description": "Pay with cash when your order arrives",
        "icon": "cash",
        "currencies": ["AUD"],
    },
}


@dataclass
class GatewayClients:
    """Provider clients shared across requests, None when not configured."""

    stripe: Optional[StripeClient] = None
    paypal: Optional[PayPalClient] = None
    afterpay: Optional[AfterpayClient] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayClients":
        retry = {"max_retries": settings.gateway_max_retries}
        rest = {**retry, "timeout": settings.gateway_timeout_seconds}

        stripe_config = settings.stripe_gateway()
        paypal_config = settings.paypal_gateway()
        afterpay_config = settings.afterpay_gateway()

        return cls(
            stripe=StripeClient(stripe_config.secret_key, **retry)
            if stripe_config.enabled
            else None,
            paypal=PayPalClient(
                paypal_config.client_id,
                paypal_config.client_secret,
                paypal_config.base_url,
                **rest,
            )
            if paypal_config.enabled
            else None,
            afterpay=AfterpayClient(
                afterpay_config.merchant_id,
                afterpay_config.secret_key,
                afterpay_config.base_url,
                user_agent=f"{settings.app_name}/{settings.app_version}",
                **rest,
            )
            if afterpay_config.enabled
            else None,
        )

    async def aclose(self) -> None:
        for client in (self.paypal, self.afterpay):
            if client is not None:
                await client.aclose()


@lru_cache
def get_gateway_clients() -> GatewayClients:
    return GatewayClients.from_settings(get_settings())


class PaymentGatewayRegistry:
    """
    Per-session factory for payment gateway adapters.

    All adapters share one payment repository, invoice service and order
    state updater, so writes made by one operation land in one transaction.

    Attributes:
        allow_mock: Whether gateways without credentials may be offered
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        clients: Optional[GatewayClients] = None,
    ):
        clients = clients or GatewayClients()
        self.session = session
        self.allow_mock = not settings.is_production

        payments = PaymentRepository(session)
        invoices = InvoiceService(session)
        orders = OrderStateUpdater(OrderStateMachine(session), invoices)
        shared = (session, payments, invoices, orders)

        self.afterpay_config = settings.afterpay_gateway()
        self.cod_config = settings.cod_gateway()

        self._gateways: dict[GatewayName, PaymentGateway] = {
            GatewayName.STRIPE: StripeGateway(*shared, settings.stripe_gateway(), clients.stripe),
            GatewayName.PAYPAL: PayPalGateway(*shared, settings.paypal_gateway(), clients.paypal),
            GatewayName.AFTERPAY: AfterpayGateway(*shared, self.afterpay_config, clients.afterpay),
            GatewayName.COD: CashOnDeliveryGateway(*shared, self.cod_config),
        }
        self.payments = payments

    def get(self, name: GatewayName) -> PaymentGateway:
        return self._gateways[name]

    def is_offered(self, name: GatewayName) -> bool:
        """True when the gateway is live, or mock gateways are allowed."""
        return self._gateways[name].is_enabled() or self.allow_mock

    def available_methods(
        self,
        subtotal: Optional[Decimal] = None,
        currency: str = "AUD",
    ) -> list[dict[str, Any]]:
        """
        List the payment methods to show at checkout.

        Args:
            subtotal: Cart subtotal, used for Afterpay instalments
            currency: Checkout currency

        Returns:
            Method descriptors in display order
        """
        currency = currency.upper()
        methods = []

        for name, details in METHOD_DETAILS.items():
            if not self.is_offered(name) or currency not in details["currencies"]:
                continue

            method: dict[str, Any] = {
                "id": name.value,
                **details,
                "enabled": True,
                "mock": not self._gateways[name].is_enabled(),
            }
            if name is GatewayName.AFTERPAY:
                method["installments"] = (
                    calculate_installments(subtotal) if subtotal and subtotal > 0 else None
                )
                method["min_amount"] = format_plain(self.afterpay_config.min_amount)
                method["max_amount"] = format_plain(self.afterpay_config.max_amount)
            elif name is GatewayName.COD:
                method["max_amount"] = format_plain(self.cod_config.max_amount)
            methods.append(method)

        logger.debug(
            "Payment methods resolved",
            currency=currency,
            subtotal=str(to_decimal(subtotal)) if subtotal is not None else None,
            methods=[method["id"] for method in methods],
        )
        return methods
