from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice.core.clock import utcnow
from backoffice.core.db import Base
from backoffice.models.enums import ChargeStatus, ManagerDecision


class ChargeRequest(Base):
    """A fee (no-show, walkout, ...) that needs a manager decision before any card is charged."""

    __tablename__ = "charge_requests"

    id: Mapped[int] = mapped_column(primary_key=True)
    table_booking_id: Mapped[int] = mapped_column(ForeignKey("table_bookings.id", ondelete="CASCADE"), index=True)

    type: Mapped[str] = mapped_column(String(20), nullable=False)  # late_cancel | no_show | reduction_fee | walkout
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="GBP")

    # null until decided; set exactly once
    manager_decision: Mapped[str | None] = mapped_column(String(20), nullable=True)
    charge_status: Mapped[str] = mapped_column(String(20), nullable=False, default=ChargeStatus.PENDING.value, index=True)

    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    charge_attempt_error: Mapped[str | None] = mapped_column(String(500), nullable=True)

    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    table_booking = relationship("TableBooking")

    @property
    def status(self) -> str:
        """pending | approved | waived | failed"""
        if self.manager_decision is None:
            return "pending"
        if self.manager_decision == ManagerDecision.WAIVED.value:
            return "waived"
        if self.charge_status == ChargeStatus.FAILED.value:
            return "failed"
        return "approved"
