"""
Test suite for webhook dispatch and HTTP status mapping.
"""

import json
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi import status

from zambezi.core.config import Settings
from zambezi.database.models import GatewayName, OrderStatus, PaymentStatus
from zambezi.services.payments.registry import PaymentGatewayRegistry
from zambezi.services.payments.results import (
    BusinessRuleViolation,
    PaymentNotFound,
    PaymentResult,
    ProviderError,
    WebhookUnverified,
)
from zambezi.services.payments.webhooks import WebhookDispatcher, status_for


@pytest.fixture
def stripe_gateway_mock() -> Mock:
    gateway = Mock()
    gateway.signature_header = "stripe-signature"
    gateway.handle_webhook = AsyncMock(return_value=PaymentResult.ok(message="Payment completed"))
    return gateway


@pytest.fixture
def dispatcher(stripe_gateway_mock) -> WebhookDispatcher:
    registry = Mock(spec=PaymentGatewayRegistry)
    registry.get.return_value = stripe_gateway_mock
    return WebhookDispatcher(registry)


# ============================================================================
# Status mapping
# ============================================================================


class TestStatusFor:
    @pytest.mark.parametrize(
        "result,expected",
        [
            (PaymentResult.ok(), status.HTTP_200_OK),
            (PaymentResult.soft_fail("Not yet"), status.HTTP_200_OK),
            (PaymentResult.fail(BusinessRuleViolation("Bad state")), status.HTTP_200_OK),
            (PaymentResult.fail(PaymentNotFound("Payment not found")), status.HTTP_200_OK),
            (PaymentResult.fail(WebhookUnverified("Bad signature")), status.HTTP_400_BAD_REQUEST),
            (
                PaymentResult.fail(ProviderError("Webhook processing failed.")),
                status.HTTP_500_INTERNAL_SERVER_ERROR,
            ),
        ],
    )
    def test_mapping(self, result, expected):
        assert status_for(result) == expected


# ============================================================================
# Dispatch
# ============================================================================


class TestDispatch:
    @pytest.mark.asyncio
    async def test_routes_to_provider(self, dispatcher, stripe_gateway_mock):
        # Arrange
        headers = {"Stripe-Signature": "t=1,v1=abc", "Content-Type": "application/json"}

        # Act
        response = await dispatcher.dispatch("Stripe", b'{"id": "evt_1"}', headers)

        # Assert
        assert response.status_code == 200
        assert response.body == {"received": True, "success": True, "message": "Payment completed"}
        dispatcher.registry.get.assert_called_once_with(GatewayName.STRIPE)
        stripe_gateway_mock.handle_webhook.assert_awaited_once_with(
            b'{"id": "evt_1"}',
            "t=1,v1=abc",
            {"stripe-signature": "t=1,v1=abc", "content-type": "application/json"},
        )

    @pytest.mark.asyncio
    async def test_gateway_without_signature_header(self, dispatcher, stripe_gateway_mock):
        stripe_gateway_mock.signature_header = None

        await dispatcher.dispatch("paypal", b"{}", {"paypal-transmission-id": "abc"})

        args = stripe_gateway_mock.handle_webhook.await_args.args
        assert args[1] is None
        assert args[2] == {"paypal-transmission-id": "abc"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider", ["square", "cod"])
    async def test_unknown_provider(self, dispatcher, provider):
        response = await dispatcher.dispatch(provider, b"{}", {})

        assert response.status_code == 404
        assert response.body == {
            "received": False,
            "message": f"Unknown webhook provider: {provider}",
        }
        dispatcher.registry.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_unverified_is_rejected(self, dispatcher, stripe_gateway_mock):
        stripe_gateway_mock.handle_webhook.return_value = PaymentResult.fail(
            WebhookUnverified("Invalid webhook signature", detail="No signatures found")
        )

        response = await dispatcher.dispatch("stripe", b"{}", {})

        assert response.status_code == 400
        assert response.body["received"] is False
        assert response.body["error_code"] == "unverified"
        assert response.body["error"] == "No signatures found"

    @pytest.mark.asyncio
    async def test_unknown_payment_is_acknowledged(self, dispatcher, stripe_gateway_mock):
        stripe_gateway_mock.handle_webhook.return_value = PaymentResult.fail(
            PaymentNotFound("Payment not found")
        )

        response = await dispatcher.dispatch("stripe", b"{}", {})

        assert response.status_code == 200
        assert response.body["received"] is True
        assert response.body["success"] is False

    @pytest.mark.asyncio
    async def test_provider_failure_asks_for_retry(self, dispatcher, stripe_gateway_mock):
        stripe_gateway_mock.handle_webhook.return_value = PaymentResult.fail(
            ProviderError("Webhook processing failed.", detail="connection reset")
        )

        response = await dispatcher.dispatch("stripe", b"{}", {})

        assert response.status_code == 500
        assert response.body["received"] is False


# ============================================================================
# Integration with the registry
# ============================================================================


class TestDispatchIntegration:
    @pytest.mark.asyncio
    async def test_unsigned_stripe_event_completes_payment(
        self, mock_session, order_factory, payment_factory
    ):
        # Arrange
        registry = PaymentGatewayRegistry(
            mock_session, Settings(_env_file=None, environment="development")
        )
        payment = payment_factory(order_factory())
        registry.payments.claim_webhook_event = AsyncMock(return_value=True)
        registry.payments.get_payment_by_transaction_id = AsyncMock(return_value=payment)
        payload = json.dumps(
            {
                "id": "evt_3",
                "type": "payment_intent.succeeded",
                "data": {"object": {"id": "pi_test_123", "status": "succeeded"}},
            }
        ).encode()

        # Act
        response = await WebhookDispatcher(registry).dispatch("stripe", payload, {})

        # Assert
        assert response.status_code == 200
        assert response.body["received"] is True
        assert response.body["payment_id"] == 11
        assert response.body["mock"] is True
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.order.status == OrderStatus.CONFIRMED
        registry.payments.claim_webhook_event.assert_awaited_once_with(
            "stripe", "evt_3", "payment_intent.succeeded"
        )
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_malformed_event_is_rejected(self, mock_session):
        registry = PaymentGatewayRegistry(
            mock_session, Settings(_env_file=None, environment="development")
        )
        registry.payments.claim_webhook_event = AsyncMock(return_value=True)
        payload = json.dumps(
            {"id": "evt_9", "type": "payment_intent.succeeded", "data": {"object": "oops"}}
        ).encode()

        response = await WebhookDispatcher(registry).dispatch("stripe", payload, {})

        assert response.status_code == 400
        assert response.body["message"] == "Invalid webhook payload"
        mock_session.commit.assert_not_awaited()
        mock_session.rollback.assert_awaited_once()
