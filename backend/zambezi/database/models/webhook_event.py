"""Processed webhook deliveries, keyed by provider event id."""

from datetime import datetime

from sqlalchemy import DateTime, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from zambezi.database.base import Base, IdType


class WebhookEvent(Base):
    """
    A provider event that has been applied.

    The unique ``(provider, event_id)`` pair makes redelivered webhooks a
    no-op: the claim insert fails and the delivery is acknowledged without
    touching payments.
    """

    __tablename__ = "webhook_events"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event"),
    )
