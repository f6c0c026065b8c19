"""Donation persistence models.

One donation row exists per payment attempt; it is created before any money
moves and later enriched by the payment provider's notification.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from donaflow.common.db import Base


JSONType = JSON().with_variant(JSONB(), "postgresql")


class Donation(Base):
    """Donor data and attribution tokens for one order."""

    __tablename__ = "donations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    amount_cents: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    fbclid: Mapped[str | None] = mapped_column(String, nullable=True)
    fbp: Mapped[str | None] = mapped_column(String, nullable=True)
    fbc: Mapped[str | None] = mapped_column(String, nullable=True)
    client_ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    client_user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
    donor_name: Mapped[str | None] = mapped_column(String, nullable=True)
    donor_email: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    event_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    country: Mapped[str | None] = mapped_column(String(2), nullable=True)
    conversion_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notification_payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class PaymentFailure(Base):
    """Provider notifications that reported a failed or denied payment."""

    __tablename__ = "payment_failures"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    order_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), server_default=func.now()
    )
