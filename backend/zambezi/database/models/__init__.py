"""
Database models package initialization.

Models are imported here so they register with the Base metadata for
Alembic and relationship resolution.
"""

from zambezi.database.base import Base, BaseModel, SoftDeleteModel
from zambezi.database.models.invoice import Invoice, InvoiceSequence, InvoiceStatus
from zambezi.database.models.order import (
    DeliveryZone,
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusHistory,
)
from zambezi.database.models.payment import GatewayName, Payment, PaymentStatus
from zambezi.database.models.webhook_event import WebhookEvent

__all__ = [
    "Base",
    "BaseModel",
    "SoftDeleteModel",
    "DeliveryZone",
    "GatewayName",
    "Invoice",
    "InvoiceSequence",
    "InvoiceStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderStatusHistory",
    "Payment",
    "PaymentStatus",
    "WebhookEvent",
]
