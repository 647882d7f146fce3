from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.core.clock import utcnow
from backoffice.core.db import Base
from backoffice.models.enums import BookingHoldStatus


class BookingHold(Base):
    """Seats held for a waitlist offer or an unpaid event booking until expires_at."""

    __tablename__ = "booking_holds"

    id: Mapped[int] = mapped_column(primary_key=True)
    hold_type: Mapped[str] = mapped_column(String(20), nullable=False)  # waitlist_hold | payment_hold
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), index=True)
    waitlist_offer_id: Mapped[int | None] = mapped_column(
        ForeignKey("waitlist_offers.id", ondelete="CASCADE"), nullable=True, index=True
    )
    event_booking_id: Mapped[int | None] = mapped_column(
        ForeignKey("event_bookings.id", ondelete="CASCADE"), nullable=True, index=True
    )

    seats_held: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BookingHoldStatus.ACTIVE.value)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
