"""
Checkout payment API endpoints.

Starts payments with any gateway, confirms them after the buyer returns
from the provider (or the driver collects cash), and reports an order's
payment status. Gateway results are returned as-is with 422 for failures.
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from zambezi.api.deps import DatabaseSession, GatewayRegistry
from zambezi.core.logging import get_logger
from zambezi.database.models import GatewayName, Order, OrderStatus, Payment
from zambezi.schemas.payments import (
    AfterpayConfirmRequest,
    CodConfirmRequest,
    PaymentInitiateRequest,
    PaymentMethodsResponse,
    PaymentStatusResponse,
    PaymentSummary,
    PayPalConfirmRequest,
    StripeConfirmRequest,
)
from zambezi.services.orders.repository import OrderRepository, OrderRepositoryError
from zambezi.services.payments.repository import PaymentRepositoryError
from zambezi.services.payments.results import PaymentResult

logger = get_logger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


def result_response(result: PaymentResult) -> JSONResponse:
    """Render a gateway result, 200 on success and 422 otherwise."""
    return JSONResponse(
        status_code=status.HTTP_200_OK if result.success else status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=jsonable_encoder(result.to_dict()),
    )


def _not_found(message: str, code: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"message": message, "code": code},
    )


def _lookup_failed(error: Exception) -> HTTPException:
    logger.error("Checkout lookup failed", error=str(error), error_type=type(error).__name__)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"message": "An unexpected error occurred", "code": "INTERNAL_ERROR"},
    )


async def load_order(db: DatabaseSession, order_id: int) -> Order:
    try:
        order = await OrderRepository(db).get_order_by_id(order_id)
    except OrderRepositoryError as e:
        raise _lookup_failed(e) from e
    if order is None:
        raise _not_found("Order not found", "ORDER_NOT_FOUND")
    return order


async def load_payment(
    registry: GatewayRegistry,
    *,
    payment_id: Optional[int] = None,
    transaction_id: Optional[str] = None,
    gateway: Optional[GatewayName] = None,
    response_key: Optional[str] = None,
) -> Payment:
    """
    Find a payment by id or provider reference.

    ``response_key`` adds a lookup on a gateway response value, used when
    the reference the buyer returns with is replaced after capture.
    """
    payments = registry.payments
    try:
        payment = None
        if payment_id is not None:
            payment = await payments.get_payment_by_id(payment_id)
        elif transaction_id:
            payment = await payments.get_payment_by_transaction_id(transaction_id)
            if payment is None and gateway is not None and response_key:
                payment = await payments.find_by_response_value(gateway, response_key, transaction_id)
    except PaymentRepositoryError as e:
        raise _lookup_failed(e) from e
    if payment is None:
        raise _not_found("Payment not found", "PAYMENT_NOT_FOUND")
    return payment


@router.get(
    "/payment-methods",
    response_model=PaymentMethodsResponse,
    summary="List payment methods",
    description="Payment methods available for the cart subtotal and currency",
)
async def get_payment_methods(
    registry: GatewayRegistry,
    subtotal: Optional[Decimal] = Query(None, ge=0, description="Cart subtotal"),
    currency: str = Query("AUD", min_length=3, max_length=3),
) -> PaymentMethodsResponse:
    return PaymentMethodsResponse(methods=registry.available_methods(subtotal, currency))


@router.get(
    "/payment/status/{order_id}",
    response_model=PaymentStatusResponse,
    summary="Get payment status",
    description="Current order status and its payment",
)
async def get_payment_status(
    order_id: int,
    db: DatabaseSession,
) -> PaymentStatusResponse:
    order = await load_order(db, order_id)
    return PaymentStatusResponse(
        order_id=order.id,
        order_number=order.order_number,
        order_status=order.status.value,
        payment=PaymentSummary.model_validate(order.payment) if order.payment else None,
    )


@router.post(
    "/payment/stripe/confirm",
    summary="Confirm Stripe payment",
    description="Check the payment intent after card confirmation or 3D Secure",
)
async def confirm_stripe(request: StripeConfirmRequest, registry: GatewayRegistry) -> JSONResponse:
    payment = await load_payment(registry, transaction_id=request.payment_intent_id)
    result = await registry.get(GatewayName.STRIPE).confirm_payment(payment)
    return result_response(result)


@router.post(
    "/payment/paypal/confirm",
    summary="Capture PayPal payment",
    description="Capture a PayPal order after buyer approval",
)
async def confirm_paypal(request: PayPalConfirmRequest, registry: GatewayRegistry) -> JSONResponse:
    payment = await load_payment(registry, transaction_id=request.paypal_order_id)
    result = await registry.get(GatewayName.PAYPAL).confirm_payment(payment)
    return result_response(result)


@router.post(
    "/payment/afterpay/confirm",
    summary="Capture Afterpay payment",
    description="Capture an Afterpay checkout after the buyer is redirected back",
)
async def confirm_afterpay(
    request: AfterpayConfirmRequest,
    registry: GatewayRegistry,
) -> JSONResponse:
    payment = await load_payment(
        registry,
        transaction_id=request.token,
        gateway=GatewayName.AFTERPAY,
        response_key="checkout_token",
    )
    result = await registry.get(GatewayName.AFTERPAY).confirm_payment(
        payment, {"status": request.status}
    )
    return result_response(result)


@router.post(
    "/payment/cod/confirm",
    summary="Record cash collection",
    description="Record the cash collected on delivery",
)
async def confirm_cod(request: CodConfirmRequest, registry: GatewayRegistry) -> JSONResponse:
    payment = await load_payment(registry, payment_id=request.payment_id)
    result = await registry.get(GatewayName.COD).confirm_payment(
        payment,
        request.model_dump(exclude={"payment_id"}, exclude_none=True),
    )
    return result_response(result)


@router.post(
    "/payment/{gateway}",
    summary="Start payment",
    description="Start paying a pending order with the chosen gateway",
)
async def initiate_payment(
    gateway: GatewayName,
    request: PaymentInitiateRequest,
    db: DatabaseSession,
    registry: GatewayRegistry,
) -> JSONResponse:
    order = await load_order(db, request.order_id)

    if order.status != OrderStatus.PENDING:
        logger.warning(
            "Payment requested for order not awaiting payment",
            order_id=order.id,
            order_status=order.status.value,
            gateway=gateway.value,
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "This order is no longer awaiting payment.", "code": "ORDER_NOT_PENDING"},
        )

    if not registry.is_offered(gateway):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": "This payment method is not available.", "code": "GATEWAY_UNAVAILABLE"},
        )

    result = await registry.get(gateway).initiate_payment(
        order,
        request.model_dump(exclude={"order_id"}, exclude_none=True),
    )
    return result_response(result)
