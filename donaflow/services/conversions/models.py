"""Conversion attempt log model."""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from donaflow.common.db import Base
from donaflow.common.state_machine import PENDING
from donaflow.services.donations.models import JSONType


class ConversionLog(Base):
    """Attempt history for reporting one donation to the ad platform.

    Rows are created at the first send attempt and afterwards only mutated.
    """

    __tablename__ = "conversion_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    donation_id: Mapped[int] = mapped_column(ForeignKey("donations.id"), index=True)
    raw_payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=PENDING, index=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), server_default=func.now()
    )
