"""
Invoice models.

Invoices are issued once per order at payment initiation and numbered
``INV-YYYYMM-NNNN`` from a per-month counter row.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from zambezi.core.money import format_money
from zambezi.database.base import Base, IdType, JSONType, SoftDeleteModel, enum_values

if TYPE_CHECKING:
    from zambezi.database.models.order import Order


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"

    @property
    def is_open(self) -> bool:
        return self in (InvoiceStatus.PENDING, InvoiceStatus.OVERDUE)


class Invoice(SoftDeleteModel):
    """
    Invoice issued for an order.

    Money columns are copied from the order when the invoice is generated
    so later order edits do not rewrite issued invoices.
    """

    __tablename__ = "invoices"

    order_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        comment="Invoiced order",
    )

    invoice_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        comment="Invoice number in INV-YYYYMM-NNNN form",
    )

    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    delivery_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="AUD")

    status: Mapped[InvoiceStatus] = mapped_column(
        SQLEnum(
            InvoiceStatus,
            name="invoice_status",
            values_callable=enum_values,
            create_constraint=True,
        ),
        nullable=False,
        default=InvoiceStatus.PENDING,
        index=True,
    )

    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # "metadata" is reserved on declarative classes
    meta: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        comment="Free-form invoice metadata",
    )

    order: Mapped["Order"] = relationship(back_populates="invoice", lazy="selectin")

    __table_args__ = (
        Index("ix_invoices_status_due", "status", "due_date"),
        CheckConstraint("total >= 0", name="ck_invoices_total_non_negative"),
        {"comment": "Invoices issued per order"},
    )

    def is_overdue(self, today: date) -> bool:
        if self.status == InvoiceStatus.OVERDUE:
            return True
        return self.status == InvoiceStatus.PENDING and self.due_date < today

    @property
    def formatted_total(self) -> str:
        return format_money(self.total)


class InvoiceSequence(Base):
    """Per-month invoice counter; ``last_value`` is the last number issued."""

    __tablename__ = "invoice_sequences"

    period: Mapped[str] = mapped_column(
        String(6),
        primary_key=True,
        comment="Numbering period in YYYYMM form",
    )
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
