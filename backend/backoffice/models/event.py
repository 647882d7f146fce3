from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice.core.clock import utcnow
from backoffice.core.db import Base
from backoffice.models.enums import EventPaymentMode


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))

    start_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)  # null => unlimited
    booking_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    event_status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")

    payment_mode: Mapped[str] = mapped_column(String(20), nullable=False, default=EventPaymentMode.FREE.value)
    price_per_seat: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)


class EventBooking(Base):
    __tablename__ = "event_bookings"

    id: Mapped[int] = mapped_column(primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), index=True)

    seats: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # confirmed | pending_payment | cancelled
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="waitlist_offer")
    hold_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    event = relationship("Event")
