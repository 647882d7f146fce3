"""Card-on-file capture for bookings held in ``pending_card_capture``.

Stripe Checkout in setup mode saves the card; the webhook then completes the
capture and confirms the booking. The saved payment method is what approved
no-show / walkout charges are later taken from.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from backoffice.core.clock import as_utc, utcnow
from backoffice.core.config import settings
from backoffice.guest.results import Blocked, CheckoutResult, CheckoutStarted, PreviewResult, Ready
from backoffice.guest.tokens import consume_subject_tokens, create_guest_token, token_hash_prefix
from backoffice.models import CardCapture, CardCaptureStatus, Customer, GuestTokenAction, TableBooking, TableBookingStatus
from backoffice.services import payments
from backoffice.services.table_bookings import (
    BookingConfirmation,
    booking_payload,
    checkout_expiry,
    checkout_idempotency_key,
    link_expiry,
    mark_booking_confirmed,
    resolve_booking_token,
)

log = logging.getLogger("anchor.card_captures")

PAYMENT_KIND = "table_card_capture"


def create_card_capture_link(
    db: Session, booking: TableBooking, *, base_url: str | None = None, now: datetime | None = None
) -> tuple[str, datetime]:
    now = now or utcnow()
    issued = create_guest_token(
        db,
        customer_id=booking.customer_id,
        action_type=GuestTokenAction.CARD_CAPTURE.value,
        table_booking_id=booking.id,
        expires_at=link_expiry(booking, now),
    )
    db.commit()
    url = f"{(base_url or settings.app_base_url()).rstrip('/')}/g/{issued.raw_token}/card-capture"
    return url, issued.expires_at


def _resolve(db: Session, raw_token, now: datetime):
    return resolve_booking_token(
        db,
        raw_token,
        GuestTokenAction.CARD_CAPTURE.value,
        pending_status=TableBookingStatus.PENDING_CARD_CAPTURE.value,
        not_pending_reason="booking_not_pending_card_capture",
        now=now,
    )


def get_card_capture_preview(db: Session, raw_token, *, now: datetime | None = None) -> PreviewResult:
    now = now or utcnow()
    resolved = _resolve(db, raw_token, now)
    if not isinstance(resolved, tuple):
        return resolved

    _, booking = resolved
    return Ready(
        {
            **booking_payload(booking),
            "hold_expires_at": as_utc(booking.hold_expires_at).isoformat() if booking.hold_expires_at else None,
        }
    )


def start_card_capture_checkout(
    db: Session, raw_token, *, base_url: str | None = None, now: datetime | None = None
) -> CheckoutResult:
    now = now or utcnow()
    resolved = _resolve(db, raw_token, now)
    if not isinstance(resolved, tuple):
        return resolved

    token, booking = resolved
    if not payments.is_configured():
        return Blocked("payment_unavailable")

    customer = db.get(Customer, booking.customer_id)
    page_url = f"{(base_url or settings.app_base_url()).rstrip('/')}/g/{raw_token}/card-capture"
    expires_at = checkout_expiry(booking, now)
    try:
        session = payments.create_checkout_session(
            idempotency_key=checkout_idempotency_key(f"table_card_capture_{booking.id}_{token.id}", expires_at),
            expires_at=expires_at,
            mode="setup",
            success_url=f"{page_url}?status=checkout_complete",
            cancel_url=page_url,
            customer_id=customer.stripe_customer_id if customer else None,
            metadata={
                "payment_kind": PAYMENT_KIND,
                "table_booking_id": str(booking.id),
                "guest_token_id": str(token.id),
            },
        )
    except payments.PaymentError:
        log.exception("card capture checkout failed booking=%s token=%s", booking.id, token_hash_prefix(raw_token))
        return Blocked("payment_unavailable")

    pending = db.execute(
        select(CardCapture.id).where(
            CardCapture.table_booking_id == booking.id,
            CardCapture.status == CardCaptureStatus.PENDING.value,
        )
    ).first()
    if pending is None:
        db.add(CardCapture(table_booking_id=booking.id, status=CardCaptureStatus.PENDING.value, created_at=now))
    db.commit()

    log.info("card capture checkout started booking=%s session=%s", booking.id, session.id)
    return CheckoutStarted(session.url, {"table_booking_id": booking.id, "checkout_session_id": session.id})


def complete_card_capture(
    db: Session,
    *,
    table_booking_id: int,
    setup_intent_id: str | None,
    payment_method_id: str | None,
    stripe_customer_id: str | None = None,
    now: datetime | None = None,
) -> BookingConfirmation:
    """Record the saved card and confirm the booking. Safe to repeat for the same booking."""
    now = now or utcnow()
    booking = db.execute(
        select(TableBooking).where(TableBooking.id == table_booking_id).with_for_update()
    ).scalar_one_or_none()
    if booking is None:
        return BookingConfirmation("blocked", "booking_not_found", table_booking_id)

    if booking.status == TableBookingStatus.CONFIRMED.value:
        db.rollback()
        return BookingConfirmation("already_confirmed", None, booking.id, booking.customer_id)

    if not mark_booking_confirmed(
        db,
        booking.id,
        from_status=TableBookingStatus.PENDING_CARD_CAPTURE.value,
        now=now,
        card_capture_completed_at=now,
    ):
        db.rollback()
        current = db.get(TableBooking, table_booking_id, populate_existing=True)
        if current is not None and current.status == TableBookingStatus.CONFIRMED.value:
            return BookingConfirmation("already_confirmed", None, table_booking_id, current.customer_id)
        return BookingConfirmation("blocked", "booking_not_pending_card_capture", table_booking_id)

    completed = db.execute(
        update(CardCapture)
        .where(CardCapture.table_booking_id == booking.id, CardCapture.status == CardCaptureStatus.PENDING.value)
        .values(
            status=CardCaptureStatus.COMPLETED.value,
            stripe_setup_intent_id=setup_intent_id,
            stripe_payment_method_id=payment_method_id,
            captured_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    ).rowcount
    if not completed:
        db.add(
            CardCapture(
                table_booking_id=booking.id,
                status=CardCaptureStatus.COMPLETED.value,
                stripe_setup_intent_id=setup_intent_id,
                stripe_payment_method_id=payment_method_id,
                captured_at=now,
                created_at=now,
            )
        )

    if stripe_customer_id:
        db.execute(
            update(Customer)
            .where(Customer.id == booking.customer_id, Customer.stripe_customer_id.is_(None))
            .values(stripe_customer_id=stripe_customer_id)
            .execution_options(synchronize_session=False)
        )

    consume_subject_tokens(
        db, action_type=GuestTokenAction.CARD_CAPTURE.value, now=now, table_booking_id=booking.id
    )
    db.commit()
    log.info("table booking %s confirmed by card capture setup_intent=%s", booking.id, setup_intent_id)
    return BookingConfirmation("confirmed", None, booking.id, booking.customer_id)
