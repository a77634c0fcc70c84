"""
Payment model for gateway transaction tracking.

One Payment row exists per order. It records which gateway handled the
checkout, the provider's transaction identifier and an accumulating
``gateway_response`` audit blob that is merged, never replaced, across
initiation, confirmation, refunds and webhooks.
"""

from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from zambezi.core.logging import get_logger
from zambezi.core.money import format_money
from zambezi.database.base import BaseModel, IdType, JSONType, enum_values

if TYPE_CHECKING:
    from zambezi.database.models.order import Order

logger = get_logger(__name__)


class PaymentStatus(str, Enum):
    """
    Payment lifecycle status.

    Attributes:
        PENDING: Created at initiation, awaiting capture or collection
        COMPLETED: Funds captured (or cash collected)
        FAILED: Provider declined or the customer abandoned the payment
        REFUNDED: Fully or partially refunded after completion
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

    @classmethod
    def from_string(cls, value: str) -> "PaymentStatus":
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"Invalid payment status: {value}")

    @property
    def is_settled(self) -> bool:
        """Money has moved for this payment at some point."""
        return self in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED)


class GatewayName(str, Enum):
    """Stable gateway identifiers persisted on payment rows."""

    STRIPE = "stripe"
    PAYPAL = "paypal"
    AFTERPAY = "afterpay"
    COD = "cod"

    @classmethod
    def from_string(cls, value: str) -> "GatewayName":
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join(g.value for g in cls)
            raise ValueError(
                f"Invalid payment gateway: {value}. Valid values are: {valid_values}"
            )


class Payment(BaseModel):
    """
    Payment attempt for an order.

    Attributes:
        order_id: Owning order, unique so an order has at most one payment
        gateway: Gateway that handled the payment
        transaction_id: Provider identifier (intent id, PayPal order id,
            Afterpay token or order id, ``COD_<order_number>``)
        status: Current payment status
        amount: Charged amount in ``currency``
        refund_amount: Total refunded so far, between zero and ``amount``
        gateway_response: Merged provider payloads for audit and lookups
    """

    __tablename__ = "payments"

    order_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        comment="Associated order identifier",
    )

    gateway: Mapped[GatewayName] = mapped_column(
        SQLEnum(
            GatewayName,
            name="payment_gateway",
            values_callable=enum_values,
            create_constraint=True,
        ),
        nullable=False,
        comment="Gateway that handled the payment",
    )

    transaction_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        comment="Provider transaction identifier",
    )

    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(
            PaymentStatus,
            name="payment_status",
            values_callable=enum_values,
            create_constraint=True,
        ),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
        comment="Current payment status",
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Payment amount",
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="AUD",
        comment="Payment currency code (ISO 4217)",
    )

    refund_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Total amount refunded",
    )

    gateway_response: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Accumulated provider responses",
    )

    order: Mapped["Order"] = relationship(back_populates="payment", lazy="selectin")

    __table_args__ = (
        Index("ix_payments_gateway_status", "gateway", "status"),
        CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
        CheckConstraint(
            "refund_amount >= 0",
            name="ck_payments_refund_amount_non_negative",
        ),
        CheckConstraint(
            "refund_amount <= amount",
            name="ck_payments_refund_not_exceed_amount",
        ),
        {"comment": "Payment attempts, one per order"},
    )

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - (self.refund_amount or Decimal("0.00"))

    @property
    def can_refund(self) -> bool:
        return self.status.is_settled and self.refundable_amount > 0

    @property
    def formatted_amount(self) -> str:
        return format_money(self.amount)

    def merge_gateway_response(self, data: Mapping[str, Any]) -> None:
        """
        Merge provider data into ``gateway_response``.

        A new dict is assigned so the JSON column is flagged dirty.
        """
        merged = dict(self.gateway_response or {})
        merged.update(data)
        self.gateway_response = merged

    def response_value(self, key: str, default: Any = None) -> Any:
        return (self.gateway_response or {}).get(key, default)
