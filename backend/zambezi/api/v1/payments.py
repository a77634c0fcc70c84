"""
Payment administration endpoints.
"""

from fastapi import APIRouter

from zambezi.api.deps import GatewayRegistry
from zambezi.api.v1.checkout import load_payment, result_response
from zambezi.core.logging import get_logger
from zambezi.schemas.payments import RefundRequest

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "/{payment_id}/refund",
    summary="Refund payment",
    description="Refund part or all of a completed payment through its gateway",
)
async def refund_payment(
    payment_id: int,
    request: RefundRequest,
    registry: GatewayRegistry,
):
    """
    Refund a payment.

    Args:
        payment_id: Payment to refund
        request: Optional partial refund amount
        registry: Gateway registry for the request session

    Returns:
        Gateway result, 422 when the refund was refused or failed

    Raises:
        HTTPException: 404 if the payment does not exist
    """
    payment = await load_payment(registry, payment_id=payment_id)

    logger.info(
        "Refund requested",
        payment_id=payment.id,
        gateway=payment.gateway.value,
        amount=str(request.amount) if request.amount is not None else "full",
    )

    result = await registry.get(payment.gateway).refund(payment, request.amount)
    return result_response(result)
