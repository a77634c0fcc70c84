"""
Checkout payment schemas.

Request bodies for initiating, confirming and refunding payments, and the
response models for payment status and available payment methods.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _validate_redirect_url(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    url = v.strip()
    if not url.startswith(("http://", "https://")):
        raise ValueError("Redirect URL must be an absolute http(s) URL")
    return url


class PaymentInitiateRequest(BaseModel):
    """Request schema for starting a payment with any gateway."""

    order_id: int = Field(
        ...,
        gt=0,
        description="Order to pay",
    )
    return_url: Optional[str] = Field(
        None,
        max_length=2048,
        description="Where the provider sends the buyer after approval",
    )
    cancel_url: Optional[str] = Field(
        None,
        max_length=2048,
        description="Where the provider sends the buyer after cancelling",
    )

    @field_validator("return_url", "cancel_url")
    @classmethod
    def validate_urls(cls, v: Optional[str]) -> Optional[str]:
        """Only accept absolute http(s) redirect targets."""
        return _validate_redirect_url(v)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_id": 1042,
                    "return_url": "https://shop.zambezimeats.com.au/checkout/confirm",
                    "cancel_url": "https://shop.zambezimeats.com.au/checkout/payment",
                }
            ]
        }
    }


class StripeConfirmRequest(BaseModel):
    payment_intent_id: str = Field(..., min_length=1, max_length=255)


class PayPalConfirmRequest(BaseModel):
    paypal_order_id: str = Field(..., min_length=1, max_length=255)


class AfterpayConfirmRequest(BaseModel):
    """Afterpay redirect parameters forwarded by the storefront."""

    token: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Checkout token from the Afterpay redirect",
    )
    status: Optional[str] = Field(
        None,
        max_length=32,
        description="Redirect status, SUCCESS or CANCELLED",
    )

    @field_validator("status")
    @classmethod
    def normalize_status(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v


class CodConfirmRequest(BaseModel):
    """Cash collection recorded by the delivery driver."""

    payment_id: int = Field(..., gt=0)
    collected_amount: Optional[Decimal] = Field(
        None,
        ge=0,
        max_digits=10,
        decimal_places=2,
        description="Cash handed over, defaults to the order total",
    )
    collector_name: Optional[str] = Field(
        None,
        max_length=100,
        description="Driver who collected the cash",
    )


class RefundRequest(BaseModel):
    amount: Optional[Decimal] = Field(
        None,
        gt=0,
        max_digits=10,
        decimal_places=2,
        description="Amount to refund, omitted for the full remaining balance",
    )


class PaymentSummary(BaseModel):
    """Payment details returned with an order's payment status."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Internal payment ID")
    gateway: str = Field(..., description="Gateway that handled the payment")
    transaction_id: Optional[str] = Field(None, description="Provider reference")
    status: str = Field(..., description="Payment status")
    amount: Decimal = Field(..., description="Amount charged")
    refund_amount: Decimal = Field(Decimal("0.00"), description="Amount refunded so far")
    currency: str = Field(..., description="Three-letter ISO currency code")
    created_at: datetime
    updated_at: datetime

    @field_validator("gateway", "status", mode="before")
    @classmethod
    def enum_value(cls, v: Any) -> Any:
        return getattr(v, "value", v)


class PaymentStatusResponse(BaseModel):
    success: bool = True
    order_id: int
    order_number: str
    order_status: str
    payment: Optional[PaymentSummary] = None


class PaymentMethodsResponse(BaseModel):
    success: bool = True
    methods: list[dict[str, Any]] = Field(default_factory=list)
