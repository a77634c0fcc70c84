"""
FastAPI dependencies for database sessions and payment gateways.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from zambezi.core.config import Settings, get_settings
from zambezi.database.connection import get_db
from zambezi.services.payments.registry import (
    GatewayClients,
    PaymentGatewayRegistry,
    get_gateway_clients,
)
from zambezi.services.payments.webhooks import WebhookDispatcher

DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]


def get_gateway_registry(
    db: DatabaseSession,
    settings: AppSettings,
    clients: Annotated[GatewayClients, Depends(get_gateway_clients)],
) -> PaymentGatewayRegistry:
    """
    Build the gateway registry for the request's database session.

    Args:
        db: Request database session
        settings: Application settings
        clients: Process wide provider clients

    Returns:
        PaymentGatewayRegistry: Adapters bound to ``db``
    """
    return PaymentGatewayRegistry(db, settings, clients)


GatewayRegistry = Annotated[PaymentGatewayRegistry, Depends(get_gateway_registry)]


def get_webhook_dispatcher(registry: GatewayRegistry) -> WebhookDispatcher:
    return WebhookDispatcher(registry)


Dispatcher = Annotated[WebhookDispatcher, Depends(get_webhook_dispatcher)]
