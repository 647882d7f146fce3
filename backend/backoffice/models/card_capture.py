from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.core.clock import utcnow
from backoffice.core.db import Base
from backoffice.models.enums import CardCaptureStatus


class CardCapture(Base):
    """Stored card (Stripe payment method) captured for a table booking."""

    __tablename__ = "card_captures"

    id: Mapped[int] = mapped_column(primary_key=True)
    table_booking_id: Mapped[int] = mapped_column(ForeignKey("table_bookings.id", ondelete="CASCADE"), index=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=CardCaptureStatus.PENDING.value)
    stripe_setup_intent_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stripe_payment_method_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    captured_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
