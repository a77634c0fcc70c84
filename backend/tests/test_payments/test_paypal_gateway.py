"""
Test suite for the PayPal gateway adapter.
"""

import json
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from zambezi.core.config import PayPalGatewayConfig
from zambezi.database.models import GatewayName, OrderStatus, PaymentStatus
from zambezi.services.payments.paypal_client import PayPalClient
from zambezi.services.payments.paypal_gateway import PayPalGateway


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def mock_gateway(gateway_deps) -> PayPalGateway:
    return PayPalGateway(*gateway_deps, PayPalGatewayConfig())


@pytest.fixture
def paypal_client() -> Mock:
    client = Mock(spec=PayPalClient)
    client.create_order = AsyncMock(
        return_value={
            "id": "5O190127TN364715T",
            "status": "CREATED",
            "links": [
                {"rel": "self", "href": "https://api-m.sandbox.paypal.com/v2/checkout/orders/5O1"},
                {"rel": "approve", "href": "https://www.sandbox.paypal.com/checkoutnow?token=5O1"},
            ],
        }
    )
    client.capture_order = AsyncMock(
        return_value={
            "id": "5O190127TN364715T",
            "status": "COMPLETED",
            "payer": {"email_address": "buyer@example.com"},
            "purchase_units": [{"payments": {"captures": [{"id": "3C679366HH908993F"}]}}],
        }
    )
    client.refund_capture = AsyncMock(return_value={"id": "1JU08902781691411", "status": "COMPLETED"})
    client.verify_webhook_signature = AsyncMock(return_value=True)
    return client


@pytest.fixture
def live_gateway(gateway_deps, paypal_client) -> PayPalGateway:
    config = PayPalGatewayConfig(enabled_flag=True, client_id="id", client_secret="secret")
    return PayPalGateway(*gateway_deps, config, paypal_client)


@pytest.fixture
def paypal_payment(order_factory, payment_factory):
    """Pending PayPal payment for a pending order."""
    return payment_factory(
        order_factory(),
        gateway=GatewayName.PAYPAL,
        transaction_id="5O190127TN364715T",
    )


def webhook(event_type: str, resource: dict, event_id: str = "WH-1") -> bytes:
    return json.dumps({"id": event_id, "event_type": event_type, "resource": resource}).encode()


# ============================================================================
# Initiation
# ============================================================================


class TestInitiatePayment:
    @pytest.mark.asyncio
    async def test_mock_initiation_builds_return_link(self, mock_gateway, order_factory):
        order = order_factory()

        result = await mock_gateway.initiate_payment(order)

        assert result.success is True
        assert result.mock is True
        paypal_order_id = result.data["paypal_order_id"]
        assert paypal_order_id.startswith("PP_MOCK_")
        assert result.data["approve_url"] == (
            f"http://localhost:5173/checkout/confirm?token={paypal_order_id}&gateway=paypal"
        )
        assert order.payment.transaction_id == paypal_order_id
        assert result.data["invoice_number"].endswith("-0007")

    @pytest.mark.asyncio
    async def test_mock_initiation_appends_to_existing_query(self, mock_gateway, order_factory):
        result = await mock_gateway.initiate_payment(
            order_factory(),
            {"return_url": "https://shop.test/checkout/confirm?step=3"},
        )

        assert result.data["approve_url"].startswith(
            "https://shop.test/checkout/confirm?step=3&token=PP_MOCK_"
        )

    @pytest.mark.asyncio
    async def test_mock_return_link_is_encoded(self, mock_gateway, order_factory):
        result = await mock_gateway.initiate_payment(
            order_factory(),
            {"return_url": "https://shop.test/checkout/confirm?ref=summer sale&token=stale"},
        )

        approve_url = result.data["approve_url"]
        params = httpx.URL(approve_url).params
        assert " " not in approve_url
        assert params["ref"] == "summer sale"
        assert params.get_list("token") == [result.data["paypal_order_id"]]
        assert params["gateway"] == "paypal"

    @pytest.mark.asyncio
    async def test_live_initiation(self, live_gateway, paypal_client, order_factory):
        # Arrange
        order = order_factory()

        # Act
        result = await live_gateway.initiate_payment(
            order,
            {"return_url": "https://shop.test/confirm", "cancel_url": "https://shop.test/cancel"},
        )

        # Assert
        assert result.success is True
        assert result.mock is False
        assert result.data["paypal_order_id"] == "5O190127TN364715T"
        assert result.data["approve_url"] == "https://www.sandbox.paypal.com/checkoutnow?token=5O1"
        paypal_client.create_order.assert_awaited_once_with(
            reference_id="ZM-20261018-0042",
            amount=Decimal("120.00"),
            currency="AUD",
            description="Zambezi Meats Order ZM-20261018-0042",
            return_url="https://shop.test/confirm",
            cancel_url="https://shop.test/cancel",
            brand_name="Zambezi Meats",
            request_id="zm-ZM-20261018-0042-order-1",
        )

    @pytest.mark.asyncio
    async def test_missing_approval_link(self, live_gateway, paypal_client, order_factory, mock_session):
        paypal_client.create_order.return_value = {"id": "5O1", "status": "CREATED", "links": []}

        result = await live_gateway.initiate_payment(order_factory())

        assert result.success is False
        assert result.message == "Failed to initialize PayPal payment."
        assert result.error.detail == "PayPal did not return an approval link"
        mock_session.add.assert_not_called()


# ============================================================================
# Capture and refunds
# ============================================================================


class TestConfirmPayment:
    @pytest.mark.asyncio
    async def test_live_capture(self, live_gateway, paypal_client, paypal_payment):
        result = await live_gateway.confirm_payment(paypal_payment)

        assert result.success is True
        assert result.message == "Payment captured successfully."
        assert result.data["capture_id"] == "3C679366HH908993F"
        assert paypal_payment.status == PaymentStatus.COMPLETED
        assert paypal_payment.response_value("payer_email") == "buyer@example.com"
        assert paypal_payment.order.status == OrderStatus.CONFIRMED
        paypal_client.capture_order.assert_awaited_once_with(
            "5O190127TN364715T",
            request_id="zm-capture-11-5O190127TN364715T",
        )

    @pytest.mark.asyncio
    async def test_capture_not_completed(self, live_gateway, paypal_client, paypal_payment):
        paypal_client.capture_order.return_value = {"id": "5O1", "status": "PAYER_ACTION_REQUIRED"}

        result = await live_gateway.confirm_payment(paypal_payment)

        assert result.success is False
        assert result.message == "Payment capture was not completed."
        assert result.data["status"] == "PAYER_ACTION_REQUIRED"
        assert paypal_payment.status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_mock_capture(self, mock_gateway, paypal_payment):
        result = await mock_gateway.confirm_payment(paypal_payment)

        assert result.success is True
        assert result.data["capture_id"].startswith("CAP_MOCK_")


class TestRefund:
    @pytest.mark.asyncio
    async def test_refund_requires_capture_id(self, mock_gateway, paypal_payment):
        paypal_payment.status = PaymentStatus.COMPLETED

        result = await mock_gateway.refund(paypal_payment)

        assert result.success is False
        assert result.message == "No capture ID found for refund."

    @pytest.mark.asyncio
    async def test_live_refund(self, live_gateway, paypal_client, paypal_payment):
        paypal_payment.status = PaymentStatus.COMPLETED
        paypal_payment.gateway_response = {"capture_id": "3C679366HH908993F"}

        result = await live_gateway.refund(paypal_payment, Decimal("40.00"))

        assert result.success is True
        assert result.data["refund_id"] == "1JU08902781691411"
        assert paypal_payment.refund_amount == Decimal("40.00")
        paypal_client.refund_capture.assert_awaited_once_with(
            "3C679366HH908993F",
            Decimal("40.00"),
            "AUD",
            request_id="zm-refund-11-1",
        )

    @pytest.mark.asyncio
    async def test_mock_refund(self, mock_gateway, paypal_payment):
        paypal_payment.status = PaymentStatus.COMPLETED
        paypal_payment.gateway_response = {"capture_id": "CAP_MOCK_1"}

        result = await mock_gateway.refund(paypal_payment)

        assert result.success is True
        assert result.data["refund_id"].startswith("REF_MOCK_")
        assert result.data["refund_amount"] == "120.00"


# ============================================================================
# Webhooks
# ============================================================================


class TestWebhooks:
    @pytest.mark.asyncio
    async def test_capture_completed(self, mock_gateway, paypal_payment):
        # Arrange
        mock_gateway.payments.get_payment_by_transaction_id = AsyncMock(return_value=paypal_payment)
        payload = webhook(
            "PAYMENT.CAPTURE.COMPLETED",
            {
                "id": "3C679366HH908993F",
                "status": "COMPLETED",
                "supplementary_data": {"related_ids": {"order_id": "5O190127TN364715T"}},
            },
        )

        # Act
        result = await mock_gateway.handle_webhook(payload)

        # Assert
        assert result.message == "Payment completed"
        assert paypal_payment.status == PaymentStatus.COMPLETED
        assert paypal_payment.response_value("capture_id") == "3C679366HH908993F"
        mock_gateway.payments.get_payment_by_transaction_id.assert_awaited_once_with(
            "5O190127TN364715T"
        )
        mock_gateway.payments.claim_webhook_event.assert_awaited_once_with(
            "paypal", "WH-1", "PAYMENT.CAPTURE.COMPLETED"
        )

    @pytest.mark.asyncio
    async def test_capture_denied(self, mock_gateway, paypal_payment):
        mock_gateway.payments.find_by_response_value = AsyncMock(return_value=None)
        mock_gateway.payments.get_payment_by_transaction_id = AsyncMock(return_value=paypal_payment)
        payload = webhook(
            "PAYMENT.CAPTURE.DENIED",
            {
                "id": "3C679366HH908993F",
                "status": "DECLINED",
                "supplementary_data": {"related_ids": {"order_id": "5O190127TN364715T"}},
            },
        )

        result = await mock_gateway.handle_webhook(payload)

        assert result.message == "Payment failure recorded"
        assert paypal_payment.status == PaymentStatus.FAILED

    @pytest.mark.asyncio
    async def test_capture_refunded(self, mock_gateway, paypal_payment):
        paypal_payment.status = PaymentStatus.COMPLETED
        mock_gateway.payments.find_by_response_value = AsyncMock(return_value=paypal_payment)
        payload = webhook(
            "PAYMENT.CAPTURE.REFUNDED",
            {
                "id": "1JU08902781691411",
                "amount": {"value": "20.00", "currency_code": "AUD"},
                "links": [
                    {
                        "rel": "up",
                        "href": "https://api.paypal.com/v2/payments/captures/3C679366HH908993F",
                    }
                ],
            },
        )

        result = await mock_gateway.handle_webhook(payload)

        assert result.message == "Refund recorded"
        assert paypal_payment.status == PaymentStatus.REFUNDED
        assert paypal_payment.refund_amount == Decimal("20.00")
        mock_gateway.payments.find_by_response_value.assert_awaited_once_with(
            GatewayName.PAYPAL, "capture_id", "3C679366HH908993F"
        )

    @pytest.mark.asyncio
    async def test_refund_already_recorded_locally(self, mock_gateway, paypal_payment):
        paypal_payment.status = PaymentStatus.REFUNDED
        paypal_payment.refund_amount = Decimal("20.00")
        paypal_payment.gateway_response = {
            "capture_id": "3C679366HH908993F",
            "refunds": [{"refund_id": "1JU08902781691411", "amount": "20.00"}],
        }
        mock_gateway.payments.find_by_response_value = AsyncMock(return_value=paypal_payment)
        payload = webhook(
            "PAYMENT.CAPTURE.REFUNDED",
            {
                "id": "1JU08902781691411",
                "amount": {"value": "20.00"},
                "links": [{"rel": "up", "href": "https://api.paypal.com/v2/payments/captures/3C6"}],
            },
        )

        result = await mock_gateway.handle_webhook(payload)

        assert result.message == "Refund already recorded"
        assert paypal_payment.refund_amount == Decimal("20.00")

    @pytest.mark.asyncio
    async def test_non_numeric_refund_amount(self, mock_gateway, paypal_payment, mock_session):
        paypal_payment.status = PaymentStatus.COMPLETED
        mock_gateway.payments.find_by_response_value = AsyncMock(return_value=paypal_payment)
        payload = webhook(
            "PAYMENT.CAPTURE.REFUNDED",
            {
                "id": "1JU08902781691411",
                "amount": {"value": "abc"},
                "links": [{"rel": "up", "href": "https://api.paypal.com/v2/payments/captures/3C6"}],
            },
        )

        result = await mock_gateway.handle_webhook(payload)

        assert result.success is False
        assert result.message == "Invalid webhook payload"
        assert result.error.kind.value == "unverified"
        assert paypal_payment.status == PaymentStatus.COMPLETED
        mock_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "event",
        [
            {"id": "WH-2", "event_type": "PAYMENT.CAPTURE.COMPLETED", "resource": ["oops"]},
            {
                "id": "WH-3",
                "event_type": "PAYMENT.CAPTURE.COMPLETED",
                "resource": {"supplementary_data": {"related_ids": "5O190127TN364715T"}},
            },
            {
                "id": "WH-4",
                "event_type": "PAYMENT.CAPTURE.REFUNDED",
                "resource": {"id": "1JU08902781691411", "links": "up"},
            },
        ],
    )
    async def test_malformed_resource(self, mock_gateway, event):
        mock_gateway.payments.get_payment_by_transaction_id = AsyncMock()

        result = await mock_gateway.handle_webhook(json.dumps(event).encode())

        assert result.success is False
        assert result.message == "Invalid webhook payload"
        assert result.error.kind.value == "unverified"
        mock_gateway.payments.get_payment_by_transaction_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unverified_webhook(self, gateway_deps, paypal_client):
        paypal_client.verify_webhook_signature.return_value = False
        config = PayPalGatewayConfig(webhook_id="WEBHOOK-ID")
        gateway = PayPalGateway(*gateway_deps, config, paypal_client)

        result = await gateway.handle_webhook(
            webhook("PAYMENT.CAPTURE.COMPLETED", {}),
            headers={"paypal-transmission-sig": "sig"},
        )

        assert result.success is False
        assert result.message == "Invalid webhook signature"
        paypal_client.verify_webhook_signature.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_verification_required_without_webhook_id(self, gateway_deps):
        gateway = PayPalGateway(*gateway_deps, PayPalGatewayConfig(require_signed_webhooks=True))

        result = await gateway.handle_webhook(webhook("PAYMENT.CAPTURE.COMPLETED", {}))

        assert result.success is False
        assert result.error.kind.value == "unverified"

    @pytest.mark.asyncio
    async def test_unhandled_event(self, mock_gateway):
        result = await mock_gateway.handle_webhook(webhook("CHECKOUT.ORDER.APPROVED", {}))

        assert result.success is True
        assert result.message == "Unhandled event type: CHECKOUT.ORDER.APPROVED"


# ============================================================================
# Mock and live response parity
# ============================================================================


class TestMockParity:
    @pytest.mark.asyncio
    async def test_initiation_keys_match(self, mock_gateway, live_gateway, order_factory):
        mock_result = await mock_gateway.initiate_payment(order_factory())
        live_result = await live_gateway.initiate_payment(order_factory())

        assert mock_result.mock is True
        assert set(mock_result.to_dict()) - {"mock"} == set(live_result.to_dict())

    @pytest.mark.asyncio
    async def test_confirmation_keys_match(
        self, mock_gateway, live_gateway, order_factory, payment_factory
    ):
        def pending_payment():
            return payment_factory(
                order_factory(),
                gateway=GatewayName.PAYPAL,
                transaction_id="5O190127TN364715T",
            )

        mock_result = await mock_gateway.confirm_payment(pending_payment())
        live_result = await live_gateway.confirm_payment(pending_payment())

        assert live_result.success is True
        assert set(mock_result.to_dict()) - {"mock"} == set(live_result.to_dict())
