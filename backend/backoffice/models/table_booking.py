from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice.core.clock import utcnow
from backoffice.core.db import Base
from backoffice.models.enums import TableBookingType


class TableBooking(Base):
    __tablename__ = "table_bookings"

    id: Mapped[int] = mapped_column(primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), index=True)
    booking_reference: Mapped[str] = mapped_column(String(32), unique=True)

    booking_type: Mapped[str] = mapped_column(String(20), default=TableBookingType.REGULAR.value, nullable=False)
    # pending_payment | pending_card_capture | confirmed | cancelled | no_show | completed
    status: Mapped[str] = mapped_column(String(32), index=True, nullable=False)

    party_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    committed_party_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    start_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    hold_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    table_name: Mapped[str | None] = mapped_column(String(64), nullable=True)

    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    card_capture_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    sunday_preorder_cutoff_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sunday_preorder_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    customer = relationship("Customer")
    items = relationship("TableBookingItem", back_populates="booking", cascade="all, delete-orphan")

    @property
    def effective_party_size(self) -> int:
        return max(1, int(self.committed_party_size or self.party_size or 1))
