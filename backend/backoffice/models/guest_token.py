from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.core.clock import utcnow
from backoffice.core.db import Base


class GuestToken(Base):
    """Hash of a raw link token handed to a guest or manager. The raw value is never stored."""

    __tablename__ = "guest_tokens"

    id: Mapped[int] = mapped_column(primary_key=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    action_type: Mapped[str] = mapped_column(String(32), nullable=False)

    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), index=True)
    table_booking_id: Mapped[int | None] = mapped_column(
        ForeignKey("table_bookings.id", ondelete="CASCADE"), nullable=True, index=True
    )
    charge_request_id: Mapped[int | None] = mapped_column(
        ForeignKey("charge_requests.id", ondelete="CASCADE"), nullable=True
    )
    waitlist_offer_id: Mapped[int | None] = mapped_column(
        ForeignKey("waitlist_offers.id", ondelete="CASCADE"), nullable=True
    )
    event_booking_id: Mapped[int | None] = mapped_column(
        ForeignKey("event_bookings.id", ondelete="CASCADE"), nullable=True
    )

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # null => usable; set once, terminal
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
