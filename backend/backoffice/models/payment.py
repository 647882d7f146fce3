from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.core.clock import utcnow
from backoffice.core.db import Base


class Payment(Base):
    """Audit row for every money movement attempt against a table booking."""

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    table_booking_id: Mapped[int] = mapped_column(ForeignKey("table_bookings.id", ondelete="CASCADE"), index=True)
    charge_request_id: Mapped[int | None] = mapped_column(ForeignKey("charge_requests.id"), nullable=True)

    charge_type: Mapped[str] = mapped_column(String(20), nullable=False)  # table_deposit | approved_fee | walkout
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stripe_checkout_session_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="GBP")
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # pending | succeeded | failed
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
