"""
Provider webhook endpoints.

Unauthenticated; each provider's adapter verifies its own signature. The
raw body is passed through untouched so signatures can be checked.
"""

from fastapi import APIRouter, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from zambezi.api.deps import Dispatcher
from zambezi.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/{provider}",
    summary="Handle provider webhook",
    description="Verify and apply a Stripe, PayPal or Afterpay webhook",
)
async def handle_webhook(provider: str, request: Request, dispatcher: Dispatcher) -> JSONResponse:
    payload = await request.body()
    logger.info("Received webhook", provider=provider, payload_bytes=len(payload))

    response = await dispatcher.dispatch(provider, payload, request.headers)
    return JSONResponse(status_code=response.status_code, content=jsonable_encoder(response.body))
