"""
Repository tests against a real async engine.

Runs the invoice counter and the webhook claim on an in-memory SQLite
database, which supports ``UPDATE ... RETURNING`` and savepoints, so the
numbering and de-duplication queries execute for real.
"""

from datetime import date
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from zambezi.database.base import Base
from zambezi.database.models import InvoiceSequence
from zambezi.database.models.webhook_event import WebhookEvent
from zambezi.services.invoices.repository import InvoiceRepository
from zambezi.services.invoices.service import InvoiceService
from zambezi.services.payments.repository import PaymentRepository


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works on SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(
            Base.metadata.create_all,
            tables=[InvoiceSequence.__table__, WebhookEvent.__table__],
        )

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ============================================================================
# Invoice numbering
# ============================================================================


class TestInvoiceSequence:
    @pytest.mark.asyncio
    async def test_numbers_are_sequential_per_period(self, session):
        service = InvoiceService(session)

        first = await service.next_invoice_number(date(2026, 10, 18))
        second = await service.next_invoice_number(date(2026, 10, 19))
        next_month = await service.next_invoice_number(date(2026, 11, 1))
        third = await service.next_invoice_number(date(2026, 10, 31))

        assert first == "INV-202610-0001"
        assert second == "INV-202610-0002"
        assert next_month == "INV-202611-0001"
        assert third == "INV-202610-0003"

    @pytest.mark.asyncio
    async def test_counter_survives_across_sessions(self, session_factory):
        async with session_factory() as session:
            assert await InvoiceRepository(session).next_sequence_value("202610") == 1
            await session.commit()

        async with session_factory() as session:
            assert await InvoiceRepository(session).next_sequence_value("202610") == 2
            await session.commit()

            row = await session.get(InvoiceSequence, "202610")
            assert row.last_value == 2

    @pytest.mark.asyncio
    async def test_rolled_back_number_is_reissued(self, session_factory):
        async with session_factory() as session:
            assert await InvoiceRepository(session).next_sequence_value("202610") == 1
            await session.commit()

        async with session_factory() as session:
            assert await InvoiceRepository(session).next_sequence_value("202610") == 2
            await session.rollback()

        async with session_factory() as session:
            assert await InvoiceRepository(session).next_sequence_value("202610") == 2


# ============================================================================
# Webhook claims
# ============================================================================


class TestWebhookClaims:
    @pytest.mark.asyncio
    async def test_redelivered_event_is_claimed_once(self, session):
        repository = PaymentRepository(session)

        first = await repository.claim_webhook_event("stripe", "evt_1", "payment_intent.succeeded")
        again = await repository.claim_webhook_event("stripe", "evt_1", "payment_intent.succeeded")

        assert first is True
        assert again is False

    @pytest.mark.asyncio
    async def test_duplicate_keeps_outer_transaction(self, session):
        repository = PaymentRepository(session)

        await repository.claim_webhook_event("stripe", "evt_1", "payment_intent.succeeded")
        await repository.claim_webhook_event("stripe", "evt_1", "payment_intent.succeeded")
        other = await repository.claim_webhook_event("paypal", "evt_1", "PAYMENT.CAPTURE.COMPLETED")
        await session.commit()

        count = await session.scalar(select(func.count()).select_from(WebhookEvent))
        assert other is True
        assert count == 2

    @pytest.mark.asyncio
    async def test_rolled_back_claim_can_be_retried(self, session_factory):
        async with session_factory() as session:
            repository = PaymentRepository(session)
            assert await repository.claim_webhook_event("stripe", "evt_2", "charge.refunded") is True
            await session.rollback()

        async with session_factory() as session:
            repository = PaymentRepository(session)
            assert await repository.claim_webhook_event("stripe", "evt_2", "charge.refunded") is True
            await session.commit()

        async with session_factory() as session:
            repository = PaymentRepository(session)
            assert await repository.claim_webhook_event("stripe", "evt_2", "charge.refunded") is False
