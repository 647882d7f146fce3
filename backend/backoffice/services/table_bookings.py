from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from backoffice.core.clock import as_utc
from backoffice.guest.results import AlreadyDecided, Blocked
from backoffice.guest.tokens import find_guest_token, token_block_reason
from backoffice.models import GuestToken, TableBooking, TableBookingStatus


@dataclass(frozen=True)
class BookingConfirmation:
    state: str  # confirmed | already_confirmed | blocked
    reason: str | None = None
    table_booking_id: int | None = None
    customer_id: int | None = None


def link_expiry(booking: TableBooking, now: datetime) -> datetime:
    """Guest links live as long as the booking's hold, or a day when there is none."""
    hold = as_utc(booking.hold_expires_at)
    if hold is not None and hold > now:
        return hold
    return now + timedelta(hours=24)


# Stripe only accepts a Checkout expiry 30 minutes to 24 hours out
CHECKOUT_MIN_LIFETIME = timedelta(minutes=31)
CHECKOUT_MAX_LIFETIME = timedelta(hours=24)


def checkout_expiry(booking: TableBooking, now: datetime) -> datetime | None:
    """Close the Checkout with the hold. None (Stripe's 24h default) when the hold is too short to express."""
    hold = as_utc(booking.hold_expires_at)
    if hold is None or hold - now < CHECKOUT_MIN_LIFETIME:
        return None
    return min(hold, now + CHECKOUT_MAX_LIFETIME)


def checkout_idempotency_key(base: str, expires_at: datetime | None) -> str:
    # a reused key must carry identical parameters
    if expires_at is None:
        return base
    return f"{base}_{int(expires_at.timestamp())}"


def booking_payload(booking: TableBooking) -> dict:
    return {
        "table_booking_id": booking.id,
        "booking_reference": booking.booking_reference,
        "status": booking.status,
        "start_datetime": as_utc(booking.start_datetime).isoformat(),
        "party_size": booking.party_size,
    }


def resolve_booking_token(
    db: Session,
    raw_token,
    action_type: str,
    *,
    pending_status: str,
    not_pending_reason: str,
    now: datetime,
    for_update: bool = False,
) -> Blocked | AlreadyDecided | tuple[GuestToken, TableBooking]:
    """Resolve a guest link pointing at a table booking that is waiting on the guest."""
    token = find_guest_token(db, raw_token, action_type, for_update=for_update)
    if token is None:
        return Blocked("invalid_token")

    booking = None
    if token.table_booking_id is not None:
        q = select(TableBooking).where(TableBooking.id == token.table_booking_id)
        if for_update:
            q = q.with_for_update()
        booking = db.execute(q).scalar_one_or_none()

    if booking is not None and booking.customer_id != token.customer_id:
        return Blocked("token_customer_mismatch")

    reason = token_block_reason(token, now)
    if booking is not None and booking.status == TableBookingStatus.CONFIRMED.value and reason in (None, "token_used"):
        return AlreadyDecided(booking_payload(booking))
    if reason:
        return Blocked(reason)
    if booking is None:
        return Blocked("booking_not_found")
    if booking.status != pending_status:
        return Blocked(not_pending_reason)

    hold = as_utc(booking.hold_expires_at)
    if hold is not None and hold <= now:
        return Blocked("hold_expired")
    return token, booking


def mark_booking_confirmed(db: Session, booking_id: int, *, from_status: str, now: datetime, **extra) -> bool:
    """Guarded write. Pre: booking status is ``from_status``. Post: confirmed, hold cleared."""
    res = db.execute(
        update(TableBooking)
        .where(TableBooking.id == booking_id, TableBooking.status == from_status)
        .values(status=TableBookingStatus.CONFIRMED.value, confirmed_at=now, hold_expires_at=None, updated_at=now, **extra)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1
