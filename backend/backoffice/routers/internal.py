"""Machine-to-machine endpoints used by the staff back-office to issue guest and manager links."""

from __future__ import annotations

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.core.db import get_db
from backoffice.models import ChargeRequest, ChargeStatus, Event, TableBooking, TableBookingStatus, TableBookingType
from backoffice.services.card_captures import create_card_capture_link
from backoffice.services.charge_approvals import send_manager_charge_approval
from backoffice.services.sunday_preorder import create_sunday_preorder_link
from backoffice.services.table_payments import create_table_payment_link, deposit_amount
from backoffice.services.waitlist_offers import create_next_waitlist_offer


def require_internal_secret(x_internal_secret: str | None = Header(default=None)):
    expected = settings.INTERNAL_API_SECRET
    if not expected or not hmac.compare_digest((x_internal_secret or "").encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


router = APIRouter(prefix="/internal", tags=["internal"], dependencies=[Depends(require_internal_secret)])


def _get_booking(db: Session, booking_id: int) -> TableBooking:
    booking = db.get(TableBooking, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Table booking not found")
    return booking


@router.post("/charge-requests/{charge_request_id}/send-approval")
def send_charge_approval(charge_request_id: int, db: Session = Depends(get_db)):
    charge = db.get(ChargeRequest, charge_request_id)
    if not charge:
        raise HTTPException(status_code=404, detail="Charge request not found")
    if charge.manager_decision is not None or charge.charge_status != ChargeStatus.PENDING.value:
        raise HTTPException(status_code=409, detail="Charge request already decided")

    result = send_manager_charge_approval(db, charge_request_id)
    if not result.sent:
        raise HTTPException(status_code=502, detail=result.error or "Failed to deliver approval link")
    return {"ok": True, "sent": True}


@router.post("/events/{event_id}/waitlist/offer-next")
def offer_next_waitlist_seats(event_id: int, db: Session = Depends(get_db)):
    if not db.get(Event, event_id):
        raise HTTPException(status_code=404, detail="Event not found")

    result = create_next_waitlist_offer(db, event_id)
    return {
        "state": result.state,
        "reason": result.reason,
        "waitlist_offer_id": result.waitlist_offer_id,
        "customer_id": result.customer_id,
        "seats_held": result.seats_held,
        "expires_at": result.expires_at.isoformat() if result.expires_at else None,
        "url": result.url,
    }


@router.post("/table-bookings/{booking_id}/payment-link")
def table_payment_link(booking_id: int, db: Session = Depends(get_db)):
    booking = _get_booking(db, booking_id)
    if booking.status != TableBookingStatus.PENDING_PAYMENT.value:
        raise HTTPException(status_code=409, detail="Booking is not waiting for payment")

    url, expires_at = create_table_payment_link(db, booking)
    return {
        "url": url,
        "expires_at": expires_at.isoformat(),
        "total_amount": str(deposit_amount(booking)),
        "currency": settings.DEFAULT_CURRENCY,
    }


@router.post("/table-bookings/{booking_id}/card-capture-link")
def card_capture_link(booking_id: int, db: Session = Depends(get_db)):
    booking = _get_booking(db, booking_id)
    if booking.status != TableBookingStatus.PENDING_CARD_CAPTURE.value:
        raise HTTPException(status_code=409, detail="Booking is not waiting for card details")

    url, expires_at = create_card_capture_link(db, booking)
    return {"url": url, "expires_at": expires_at.isoformat()}


@router.post("/table-bookings/{booking_id}/sunday-preorder-link")
def sunday_preorder_link(booking_id: int, db: Session = Depends(get_db)):
    booking = _get_booking(db, booking_id)
    if booking.booking_type != TableBookingType.SUNDAY_LUNCH.value:
        raise HTTPException(status_code=409, detail="Not a Sunday lunch booking")
    if booking.status in (TableBookingStatus.CANCELLED.value, TableBookingStatus.NO_SHOW.value):
        raise HTTPException(status_code=409, detail="Booking is not active")

    url, expires_at = create_sunday_preorder_link(db, booking)
    return {"url": url, "expires_at": expires_at.isoformat()}
