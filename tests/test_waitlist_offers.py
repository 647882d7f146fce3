from datetime import timedelta
from decimal import Decimal

from backoffice.core.clock import utcnow
from backoffice.guest.results import AlreadyDecided, Blocked, DecisionApplied, Ready
from backoffice.models import BookingHold, EventBooking, WaitlistEntry, WaitlistOffer
from backoffice.services.waitlist_offers import (
    accept_waitlist_offer,
    create_next_waitlist_offer,
    event_seats_remaining,
    get_waitlist_offer_preview,
)
from conftest import raw_token_from


def _booked(db, event, customer, seats, status="confirmed"):
    db.add(EventBooking(event_id=event.id, customer_id=customer.id, seats=seats, status=status))
    db.commit()


def test_offer_goes_to_oldest_entry_that_fits(db, make):
    event = make.event(capacity=10)
    _booked(db, event, make.customer(), 7)
    too_big = make.waitlist_entry(event, seats=4)
    fits = make.waitlist_entry(event, seats=3)

    created = create_next_waitlist_offer(db, event.id)

    assert created.state == "offered"
    assert created.customer_id == fits.customer_id
    assert created.seats_held == 3
    assert created.url.endswith("/waitlist-offer")
    db.expire_all()
    assert db.get(WaitlistEntry, too_big.id).status == "queued"
    assert db.get(WaitlistEntry, fits.id).status == "offered"
    assert event_seats_remaining(db, event, utcnow()) == 0


def test_no_offer_when_full_or_queue_empty(db, make):
    full = make.event(capacity=2)
    _booked(db, full, make.customer(), 2)
    make.waitlist_entry(full, seats=1)
    assert create_next_waitlist_offer(db, full.id).reason == "no_capacity"

    empty = make.event(capacity=None)
    assert create_next_waitlist_offer(db, empty.id).reason == "no_eligible_waitlist_entry"

    closed = make.event(booking_open=False)
    assert create_next_waitlist_offer(db, closed.id).reason == "booking_closed"


def test_preview_excludes_own_hold_from_capacity(db, make):
    event = make.event(capacity=4)
    make.waitlist_entry(event, seats=4)
    created = create_next_waitlist_offer(db, event.id)

    preview = get_waitlist_offer_preview(db, raw_token_from(created.url))

    assert isinstance(preview, Ready)
    assert preview.data["capacity_available"] == 4
    assert preview.data["seats_held"] == 4


def test_accepting_free_event_confirms_seats(db, make):
    event = make.event(capacity=6)
    make.waitlist_entry(event, seats=2)
    created = create_next_waitlist_offer(db, event.id)
    raw = raw_token_from(created.url)

    result = accept_waitlist_offer(db, raw)

    assert isinstance(result, DecisionApplied)
    assert result.data["booking_status"] == "confirmed"
    db.expire_all()
    assert db.get(WaitlistOffer, created.waitlist_offer_id).status == "accepted"
    hold = db.query(BookingHold).one()
    assert hold.status == "consumed"
    assert isinstance(accept_waitlist_offer(db, raw), AlreadyDecided)
    assert isinstance(get_waitlist_offer_preview(db, raw), AlreadyDecided)


def test_accepting_prepaid_event_holds_for_payment(db, make):
    event = make.event(capacity=6, payment_mode="prepaid", price_per_seat=Decimal("12.50"))
    make.waitlist_entry(event, seats=2)
    created = create_next_waitlist_offer(db, event.id)
    raw = raw_token_from(created.url)

    preview = get_waitlist_offer_preview(db, raw)
    assert preview.data["total_display"] == "£25.00"

    result = accept_waitlist_offer(db, raw)

    assert result.data["booking_status"] == "pending_payment"
    holds = {h.hold_type: h.status for h in db.query(BookingHold).all()}
    assert holds == {"waitlist_hold": "consumed", "payment_hold": "active"}


def test_offer_that_lapsed_after_a_ready_preview_is_blocked(db, make):
    event = make.event(capacity=6)
    entry = make.waitlist_entry(event, seats=2)
    created = create_next_waitlist_offer(db, event.id)
    raw = raw_token_from(created.url)
    offer = db.get(WaitlistOffer, created.waitlist_offer_id)
    now = utcnow()
    offer.expires_at = now + timedelta(minutes=30)
    db.commit()

    assert isinstance(get_waitlist_offer_preview(db, raw, now=now), Ready)

    result = accept_waitlist_offer(db, raw, now=now + timedelta(hours=1))

    assert result == Blocked("offer_expired")
    db.expire_all()
    assert db.get(WaitlistOffer, offer.id).status == "expired"
    assert db.get(WaitlistEntry, entry.id).status == "expired"
    assert db.query(BookingHold).one().status == "expired"
    assert db.query(EventBooking).count() == 0


def test_offer_loses_seats_taken_meanwhile(db, make):
    event = make.event(capacity=4)
    make.waitlist_entry(event, seats=3)
    created = create_next_waitlist_offer(db, event.id)
    raw = raw_token_from(created.url)
    _booked(db, event, make.customer(), 2)

    assert get_waitlist_offer_preview(db, raw) == Blocked("capacity_unavailable")
    assert accept_waitlist_offer(db, raw) == Blocked("capacity_unavailable")
    db.expire_all()
    assert db.get(WaitlistOffer, created.waitlist_offer_id).status == "expired"


def test_expired_link_is_blocked(db, make):
    event = make.event()
    make.waitlist_entry(event, seats=1)
    created = create_next_waitlist_offer(db, event.id)

    later = utcnow() + timedelta(hours=25)
    assert get_waitlist_offer_preview(db, raw_token_from(created.url), now=later) == Blocked("token_expired")
