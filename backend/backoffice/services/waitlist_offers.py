"""Event waitlist offers: seats are held for the next queued guest for up to 24h."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from backoffice.core.clock import as_utc, format_money, to_money, utcnow
from backoffice.core.config import settings
from backoffice.guest.results import (
    AlreadyDecided,
    Blocked,
    DecisionApplied,
    DecisionResult,
    PreviewResult,
    Ready,
)
from backoffice.guest.tokens import (
    consume_guest_token,
    create_guest_token,
    find_guest_token,
    token_block_reason,
    token_hash_prefix,
)
from backoffice.models import (
    BookingHold,
    BookingHoldStatus,
    BookingHoldType,
    Event,
    EventBooking,
    EventBookingStatus,
    EventPaymentMode,
    GuestToken,
    GuestTokenAction,
    WaitlistEntry,
    WaitlistEntryStatus,
    WaitlistOffer,
    WaitlistOfferStatus,
)

log = logging.getLogger("anchor.waitlist")

OFFER_WINDOW = timedelta(hours=24)
_UNBOOKABLE_EVENT_STATUSES = ("cancelled", "draft")


@dataclass(frozen=True)
class OfferCreated:
    state: str  # offered | none
    reason: str | None = None
    waitlist_offer_id: int | None = None
    customer_id: int | None = None
    seats_held: int | None = None
    expires_at: datetime | None = None
    url: str | None = None


def event_block_reason(event: Event | None, now: datetime) -> str | None:
    if event is None:
        return "event_not_found"
    if as_utc(event.start_datetime) <= now:
        return "event_started"
    if not event.booking_open:
        return "booking_closed"
    if (event.event_status or "scheduled") in _UNBOOKABLE_EVENT_STATUSES:
        return "not_bookable"
    return None


def event_seats_remaining(
    db: Session, event: Event, now: datetime, *, exclude_offer_id: int | None = None
) -> int | None:
    """Capacity left after bookings and live waitlist holds; None means unlimited."""
    if event.capacity is None:
        return None

    booked = db.execute(
        select(func.coalesce(func.sum(EventBooking.seats), 0)).where(
            EventBooking.event_id == event.id,
            or_(
                EventBooking.status == EventBookingStatus.CONFIRMED.value,
                and_(
                    EventBooking.status == EventBookingStatus.PENDING_PAYMENT.value,
                    or_(EventBooking.hold_expires_at.is_(None), EventBooking.hold_expires_at > now),
                ),
            ),
        )
    ).scalar_one()

    held_q = select(func.coalesce(func.sum(BookingHold.seats_held), 0)).where(
        BookingHold.event_id == event.id,
        BookingHold.hold_type == BookingHoldType.WAITLIST_HOLD.value,
        BookingHold.status == BookingHoldStatus.ACTIVE.value,
        BookingHold.expires_at > now,
    )
    if exclude_offer_id is not None:
        held_q = held_q.where(BookingHold.waitlist_offer_id != exclude_offer_id)
    held = db.execute(held_q).scalar_one()

    return max(0, int(event.capacity) - int(booked) - int(held))


def _offer_expiry(event: Event, now: datetime) -> datetime:
    return min(as_utc(event.start_datetime), now + OFFER_WINDOW)


def create_next_waitlist_offer(
    db: Session, event_id: int, *, base_url: str | None = None, now: datetime | None = None
) -> OfferCreated:
    """Offer freed seats to the oldest queued entry that fits; holds them until the offer expires."""
    now = now or utcnow()
    event = db.execute(select(Event).where(Event.id == event_id).with_for_update()).scalar_one_or_none()
    reason = event_block_reason(event, now)
    if reason:
        db.rollback()
        return OfferCreated(state="none", reason=reason)

    remaining = event_seats_remaining(db, event, now)
    if remaining is not None and remaining < 1:
        db.rollback()
        return OfferCreated(state="none", reason="no_capacity")

    q = (
        select(WaitlistEntry)
        .where(WaitlistEntry.event_id == event.id, WaitlistEntry.status == WaitlistEntryStatus.QUEUED.value)
        .order_by(WaitlistEntry.created_at.asc(), WaitlistEntry.id.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
    )
    if remaining is not None:
        q = q.where(WaitlistEntry.requested_seats <= remaining)
    entry = db.execute(q).scalar_one_or_none()
    if entry is None:
        db.rollback()
        return OfferCreated(state="none", reason="no_eligible_waitlist_entry")

    expires_at = _offer_expiry(event, now)
    offer = WaitlistOffer(
        waitlist_entry_id=entry.id,
        event_id=event.id,
        customer_id=entry.customer_id,
        seats_held=entry.requested_seats,
        status=WaitlistOfferStatus.SENT.value,
        expires_at=expires_at,
        created_at=now,
    )
    db.add(offer)
    db.flush()

    db.add(
        BookingHold(
            hold_type=BookingHoldType.WAITLIST_HOLD.value,
            event_id=event.id,
            waitlist_offer_id=offer.id,
            seats_held=entry.requested_seats,
            status=BookingHoldStatus.ACTIVE.value,
            expires_at=expires_at,
            created_at=now,
        )
    )
    entry.status = WaitlistEntryStatus.OFFERED.value
    entry.offered_at = now

    issued = create_guest_token(
        db,
        customer_id=entry.customer_id,
        action_type=GuestTokenAction.WAITLIST_OFFER.value,
        waitlist_offer_id=offer.id,
        expires_at=expires_at,
    )
    db.commit()

    log.info("waitlist offer %s sent event=%s seats=%s", offer.id, event.id, entry.requested_seats)
    return OfferCreated(
        state="offered",
        waitlist_offer_id=offer.id,
        customer_id=entry.customer_id,
        seats_held=entry.requested_seats,
        expires_at=expires_at,
        url=f"{(base_url or settings.app_base_url()).rstrip('/')}/g/{issued.raw_token}/waitlist-offer",
    )


def _expire_offer(db: Session, offer: WaitlistOffer, now: datetime) -> None:
    """Release the offer, its hold and its queue entry."""
    db.execute(
        update(WaitlistOffer)
        .where(WaitlistOffer.id == offer.id, WaitlistOffer.status == WaitlistOfferStatus.SENT.value)
        .values(status=WaitlistOfferStatus.EXPIRED.value, expired_at=now)
    )
    db.execute(
        update(BookingHold)
        .where(BookingHold.waitlist_offer_id == offer.id, BookingHold.status == BookingHoldStatus.ACTIVE.value)
        .values(status=BookingHoldStatus.EXPIRED.value, released_at=now)
    )
    db.execute(
        update(WaitlistEntry)
        .where(WaitlistEntry.id == offer.waitlist_entry_id, WaitlistEntry.status == WaitlistEntryStatus.OFFERED.value)
        .values(status=WaitlistEntryStatus.EXPIRED.value, expired_at=now)
    )


def _accepted_payload(db: Session, offer: WaitlistOffer) -> dict:
    booking = db.execute(
        select(EventBooking)
        .where(EventBooking.event_id == offer.event_id, EventBooking.customer_id == offer.customer_id)
        .order_by(EventBooking.created_at.desc(), EventBooking.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    return {
        "waitlist_offer_id": offer.id,
        "event_id": offer.event_id,
        "seats": offer.seats_held,
        "event_booking_id": booking.id if booking else None,
        "booking_status": booking.status if booking else None,
    }


def _resolve(
    db: Session, token: GuestToken | None, now: datetime, *, for_update: bool = False
) -> Blocked | AlreadyDecided | WaitlistOffer:
    if token is None:
        return Blocked("invalid_token")

    offer = None
    if token.waitlist_offer_id is not None:
        q = select(WaitlistOffer).where(WaitlistOffer.id == token.waitlist_offer_id)
        if for_update:
            q = q.with_for_update()
        offer = db.execute(q).scalar_one_or_none()

    reason = token_block_reason(token, now)
    if reason == "token_used" and offer is not None and offer.status == WaitlistOfferStatus.ACCEPTED.value:
        return AlreadyDecided(_accepted_payload(db, offer))
    if reason:
        return Blocked(reason)
    if offer is None:
        return Blocked("offer_not_found")
    if offer.customer_id != token.customer_id:
        return Blocked("token_customer_mismatch")
    if offer.status != WaitlistOfferStatus.SENT.value:
        return Blocked("offer_unavailable")
    return offer


def get_waitlist_offer_preview(db: Session, raw_token, *, now: datetime | None = None) -> PreviewResult:
    now = now or utcnow()
    token = find_guest_token(db, raw_token, GuestTokenAction.WAITLIST_OFFER.value)
    resolved = _resolve(db, token, now)
    if not isinstance(resolved, WaitlistOffer):
        return resolved

    offer = resolved
    if as_utc(offer.expires_at) <= now:
        return Blocked("offer_expired")

    event = db.get(Event, offer.event_id)
    reason = event_block_reason(event, now)
    if reason:
        return Blocked(reason)

    remaining = event_seats_remaining(db, event, now, exclude_offer_id=offer.id)
    if remaining is not None and remaining < offer.seats_held:
        return Blocked("capacity_unavailable")

    prepaid = event.payment_mode == EventPaymentMode.PREPAID.value
    price = to_money(event.price_per_seat, fallback=None) if prepaid else None
    total = price * offer.seats_held if price is not None else None
    return Ready(
        {
            "waitlist_offer_id": offer.id,
            "event_id": event.id,
            "event_name": event.name,
            "event_start_datetime": as_utc(event.start_datetime).isoformat(),
            "seats_held": offer.seats_held,
            "expires_at": as_utc(offer.expires_at).isoformat(),
            "payment_mode": event.payment_mode,
            "price_per_seat": str(price) if price is not None else None,
            "total_display": format_money(total, settings.DEFAULT_CURRENCY) if total is not None else None,
            "capacity_available": remaining,
        }
    )


def _mark_offer_accepted(db: Session, offer_id: int, now: datetime) -> bool:
    """Guarded write. Pre: offer status 'sent'. Post: 'accepted' for exactly one caller."""
    res = db.execute(
        update(WaitlistOffer)
        .where(WaitlistOffer.id == offer_id, WaitlistOffer.status == WaitlistOfferStatus.SENT.value)
        .values(status=WaitlistOfferStatus.ACCEPTED.value, accepted_at=now)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def accept_waitlist_offer(db: Session, raw_token, *, now: datetime | None = None) -> DecisionResult:
    """Turn a live offer into an event booking.

    Expiry, event state and capacity are re-checked here, not trusted from the
    preview; an offer that has lapsed or lost its seats is expired on the spot.
    """
    now = now or utcnow()
    token = find_guest_token(db, raw_token, GuestTokenAction.WAITLIST_OFFER.value, for_update=True)
    resolved = _resolve(db, token, now, for_update=True)
    if not isinstance(resolved, WaitlistOffer):
        db.rollback()
        return resolved

    offer = resolved
    if as_utc(offer.expires_at) <= now:
        _expire_offer(db, offer, now)
        db.commit()
        log.info("waitlist offer %s expired before acceptance", offer.id)
        return Blocked("offer_expired")

    event = db.execute(select(Event).where(Event.id == offer.event_id).with_for_update()).scalar_one_or_none()
    reason = event_block_reason(event, now)
    if reason:
        db.rollback()
        return Blocked(reason)

    remaining = event_seats_remaining(db, event, now, exclude_offer_id=offer.id)
    if remaining is not None and remaining < offer.seats_held:
        _expire_offer(db, offer, now)
        db.commit()
        log.info("waitlist offer %s lost its seats (remaining=%s)", offer.id, remaining)
        return Blocked("capacity_unavailable")

    if not _mark_offer_accepted(db, offer.id, now):
        db.rollback()
        return AlreadyDecided({"waitlist_offer_id": offer.id})

    prepaid = event.payment_mode == EventPaymentMode.PREPAID.value
    hold_expires_at = min(as_utc(event.start_datetime), now + OFFER_WINDOW) if prepaid else None
    booking = EventBooking(
        event_id=event.id,
        customer_id=offer.customer_id,
        seats=offer.seats_held,
        status=EventBookingStatus.PENDING_PAYMENT.value if prepaid else EventBookingStatus.CONFIRMED.value,
        source="waitlist_offer",
        hold_expires_at=hold_expires_at,
        created_at=now,
    )
    db.add(booking)
    db.flush()

    if prepaid:
        db.add(
            BookingHold(
                hold_type=BookingHoldType.PAYMENT_HOLD.value,
                event_id=event.id,
                event_booking_id=booking.id,
                seats_held=offer.seats_held,
                status=BookingHoldStatus.ACTIVE.value,
                expires_at=hold_expires_at,
                created_at=now,
            )
        )

    db.execute(
        update(BookingHold)
        .where(BookingHold.waitlist_offer_id == offer.id, BookingHold.status == BookingHoldStatus.ACTIVE.value)
        .values(status=BookingHoldStatus.CONSUMED.value, consumed_at=now)
    )
    db.execute(
        update(WaitlistEntry)
        .where(WaitlistEntry.id == offer.waitlist_entry_id)
        .values(status=WaitlistEntryStatus.ACCEPTED.value, accepted_at=now)
    )
    consume_guest_token(db, token.id, now)
    db.commit()

    log.info(
        "waitlist offer %s accepted booking=%s status=%s token=%s",
        offer.id,
        booking.id,
        booking.status,
        token_hash_prefix(raw_token),
    )
    return DecisionApplied(
        {
            "waitlist_offer_id": offer.id,
            "event_id": event.id,
            "event_booking_id": booking.id,
            "booking_status": booking.status,
            "seats": booking.seats,
            "hold_expires_at": hold_expires_at.isoformat() if hold_expires_at else None,
        }
    )
