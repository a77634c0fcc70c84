"""
Pytest configuration and shared test fixtures.

Provides the test client, a mocked async database session, factories for
transient orders and payments, and the collaborators every gateway adapter
is built from. No test talks to a real database or payment provider.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_ENABLE_BACKGROUND_TASKS", "false")

from decimal import Decimal
from typing import Any, Callable, Generator
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession

from zambezi.database.models import (
    GatewayName,
    Invoice,
    InvoiceStatus,
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
)
from zambezi.services.invoices.repository import InvoiceRepository
from zambezi.services.invoices.service import InvoiceService
from zambezi.services.orders.state_machine import OrderStateMachine
from zambezi.services.orders.updater import OrderStateUpdater
from zambezi.services.payments.repository import PaymentRepository


@pytest.fixture(scope="function")
def test_client() -> Generator[TestClient, None, None]:
    """
    Create a synchronous test client for the FastAPI application.

    Yields:
        TestClient: Client with the application lifespan running
    """
    from zambezi.main import app

    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def mock_session() -> Mock:
    """
    Create a mock async session.

    Objects passed to ``add`` are recorded on ``session.added`` and receive
    an id on ``flush``, the way the database would assign one.
    """
    added: list[Any] = []

    async def flush() -> None:
        for index, obj in enumerate(added, start=1):
            if hasattr(type(obj), "id") and getattr(obj, "id", None) is None:
                obj.id = 100 + index

    session = Mock(spec=AsyncSession)
    session.added = added
    session.add = Mock(side_effect=added.append)
    session.flush = AsyncMock(side_effect=flush)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


@pytest.fixture
def invoice_repository() -> Mock:
    """Invoice repository handing out sequence number 7 for every period."""

    async def add(invoice: Invoice) -> Invoice:
        invoice.id = 501
        return invoice

    repository = Mock(spec=InvoiceRepository)
    repository.get_by_order_id = AsyncMock(return_value=None)
    repository.next_sequence_value = AsyncMock(return_value=7)
    repository.add = AsyncMock(side_effect=add)
    repository.list_overdue_candidates = AsyncMock(return_value=[])
    return repository


@pytest.fixture
def invoice_service(mock_session: Mock, invoice_repository: Mock) -> InvoiceService:
    return InvoiceService(mock_session, repository=invoice_repository)


@pytest.fixture
def order_updater(mock_session: Mock, invoice_service: InvoiceService) -> OrderStateUpdater:
    return OrderStateUpdater(OrderStateMachine(mock_session), invoice_service)


@pytest.fixture
def payment_repository(mock_session: Mock) -> PaymentRepository:
    """
    Real payment repository over the mock session.

    Writes go through the session mock; tests replace the lookup methods
    with ``AsyncMock`` where they need query results.
    """
    repository = PaymentRepository(mock_session)
    repository.claim_webhook_event = AsyncMock(return_value=True)
    return repository


@pytest.fixture
def gateway_deps(
    mock_session: Mock,
    payment_repository: PaymentRepository,
    invoice_service: InvoiceService,
    order_updater: OrderStateUpdater,
) -> tuple:
    """Positional constructor arguments shared by every gateway adapter."""
    return (mock_session, payment_repository, invoice_service, order_updater)


@pytest.fixture
def order_factory() -> Callable[..., Order]:
    """
    Build transient orders.

    Example:
        >>> order = order_factory(total=Decimal("45.00"))
    """

    def make(**overrides: Any) -> Order:
        fields: dict[str, Any] = {
            "id": 42,
            "order_number": "ZM-20261018-0042",
            "status": OrderStatus.PENDING,
            "customer_name": "Thandiwe Moyo",
            "customer_email": "thandiwe@example.com",
            "subtotal": Decimal("110.00"),
            "delivery_fee": Decimal("10.00"),
            "discount": Decimal("0.00"),
            "total": Decimal("120.00"),
            "currency": "AUD",
            "exchange_rate": Decimal("1"),
        }
        fields.update(overrides)
        return Order(**fields)

    return make


@pytest.fixture
def payment_factory() -> Callable[..., Payment]:
    """Build a transient payment attached to ``order``."""

    def make(order: Order, **overrides: Any) -> Payment:
        fields: dict[str, Any] = {
            "id": 11,
            "gateway": GatewayName.STRIPE,
            "transaction_id": "pi_test_123",
            "status": PaymentStatus.PENDING,
            "amount": order.total,
            "currency": order.currency,
            "refund_amount": Decimal("0.00"),
            "gateway_response": {},
        }
        fields.update(overrides)
        payment = Payment(**fields)
        payment.order = order
        payment.order_id = order.id
        return payment

    return make


@pytest.fixture
def invoice_factory() -> Callable[..., Invoice]:
    """Build a transient pending invoice attached to ``order``."""

    def make(order: Order, **overrides: Any) -> Invoice:
        from datetime import date, timedelta

        fields: dict[str, Any] = {
            "id": 77,
            "invoice_number": "INV-202610-0001",
            "subtotal": order.subtotal,
            "delivery_fee": order.delivery_fee,
            "discount": order.discount,
            "total": order.total,
            "currency": order.currency,
            "status": InvoiceStatus.PENDING,
            "issue_date": date(2026, 10, 1),
            "due_date": date(2026, 10, 1) + timedelta(days=30),
        }
        fields.update(overrides)
        invoice = Invoice(**fields)
        invoice.order = order
        invoice.order_id = order.id
        return invoice

    return make
