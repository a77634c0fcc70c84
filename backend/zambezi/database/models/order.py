"""
Order models for checkout and fulfilment tracking.

Only the columns the payment core reads or writes are mapped here; the
catalog, cart and delivery proof tables live with the storefront.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from zambezi.core.money import format_money
from zambezi.database.base import Base, BaseModel, IdType, enum_values

if TYPE_CHECKING:
    from zambezi.database.models.invoice import Invoice
    from zambezi.database.models.payment import Payment


class OrderStatus(str, Enum):
    """
    Order lifecycle status.

    The common path only moves forward:
    pending -> confirmed -> processing -> ready -> out_for_delivery -> delivered.
    Cancellation is possible from pending or confirmed only.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join(s.value for s in cls)
            raise ValueError(
                f"Invalid order status: {value}. Valid values are: {valid_values}"
            )

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)

    @property
    def is_cancellable(self) -> bool:
        return self in (OrderStatus.PENDING, OrderStatus.CONFIRMED)


class DeliveryZone(BaseModel):
    """Delivery area an order ships to."""

    __tablename__ = "delivery_zones"

    name: Mapped[str] = mapped_column(String(100), nullable=False, comment="Zone name")

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether the zone accepts new orders",
    )

    supports_cod: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="true",
        comment="Whether Cash on Delivery is offered in this zone",
    )


class Order(BaseModel):
    """
    Customer order, the aggregate root of a checkout.

    Attributes:
        order_number: Public reference in ``ZM-YYYYMMDD-XXXX`` form
        status: Current lifecycle status
        subtotal, delivery_fee, discount, total: Order money in ``currency``
        exchange_rate: Rate applied when the storefront currency is not AUD
        delivery_zone_id: Zone used for COD availability
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        comment="Public order reference",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            values_callable=enum_values,
            create_constraint=True,
        ),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Current order status",
    )

    customer_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Customer full name",
    )

    customer_email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Customer email address",
    )

    delivery_zone_id: Mapped[Optional[int]] = mapped_column(
        IdType,
        ForeignKey("delivery_zones.id", ondelete="SET NULL"),
        nullable=True,
        comment="Delivery zone",
    )

    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    delivery_fee: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0.00")
    )
    discount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0.00")
    )
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="AUD",
        comment="ISO 4217 currency code",
    )

    exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(12, 6),
        nullable=False,
        default=Decimal("1"),
        comment="Exchange rate from AUD at order time",
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    delivery_zone: Mapped[Optional[DeliveryZone]] = relationship(lazy="selectin")

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    payment: Mapped[Optional["Payment"]] = relationship(
        back_populates="order",
        uselist=False,
        lazy="selectin",
    )

    invoice: Mapped[Optional["Invoice"]] = relationship(
        back_populates="order",
        uselist=False,
        lazy="selectin",
    )

    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )

    __table_args__ = (
        Index("ix_orders_status_created", "status", "created_at"),
        CheckConstraint("total >= 0", name="ck_orders_total_non_negative"),
        CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        {"comment": "Customer orders"},
    )

    @property
    def formatted_total(self) -> str:
        return format_money(self.total)


class OrderItem(BaseModel):
    """Line item on an order, sent to Afterpay as checkout items."""

    __tablename__ = "order_items"

    order_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    order: Mapped[Order] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderStatusHistory(Base):
    """Append-only trail of order status changes."""

    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status: Mapped[Optional[OrderStatus]] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", values_callable=enum_values),
        nullable=True,
    )
    to_status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", values_callable=enum_values),
        nullable=False,
    )
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    order: Mapped[Order] = relationship(back_populates="status_history")
