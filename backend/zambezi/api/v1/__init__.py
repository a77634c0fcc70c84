"""
API v1 package initialization.

This module collects the v1 routers for the Zambezi Meats checkout API.
"""

from zambezi.api.v1.checkout import router as checkout_router
from zambezi.api.v1.payments import router as payments_router
from zambezi.api.v1.webhooks import router as webhooks_router

__all__ = ["checkout_router", "payments_router", "webhooks_router"]
