"""Deposits for table bookings held in ``pending_payment``.

The guest link only starts a hosted Stripe Checkout; the booking is confirmed
by the ``checkout.session.completed`` webhook, never by the browser returning.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from backoffice.core.clock import as_utc, format_money, utcnow
from backoffice.core.config import settings
from backoffice.guest.results import Blocked, CheckoutResult, CheckoutStarted, PreviewResult, Ready
from backoffice.guest.tokens import consume_subject_tokens, create_guest_token, token_hash_prefix
from backoffice.models import (
    Customer,
    GuestTokenAction,
    Payment,
    PaymentChargeType,
    PaymentStatus,
    TableBooking,
    TableBookingStatus,
)
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

log = logging.getLogger("anchor.table_payments")

PAYMENT_KIND = PaymentChargeType.TABLE_DEPOSIT.value


def deposit_amount(booking: TableBooking) -> Decimal:
    return (settings.TABLE_DEPOSIT_PER_PERSON * max(1, booking.party_size or 1)).quantize(Decimal("0.01"))


def create_table_payment_link(
    db: Session, booking: TableBooking, *, base_url: str | None = None, now: datetime | None = None
) -> tuple[str, datetime]:
    now = now or utcnow()
    issued = create_guest_token(
        db,
        customer_id=booking.customer_id,
        action_type=GuestTokenAction.PAYMENT.value,
        table_booking_id=booking.id,
        expires_at=link_expiry(booking, now),
    )
    db.commit()
    url = f"{(base_url or settings.app_base_url()).rstrip('/')}/g/{issued.raw_token}/table-payment"
    return url, issued.expires_at


def _resolve(db: Session, raw_token, now: datetime, *, for_update: bool = False):
    return resolve_booking_token(
        db,
        raw_token,
        GuestTokenAction.PAYMENT.value,
        pending_status=TableBookingStatus.PENDING_PAYMENT.value,
        not_pending_reason="booking_not_pending_payment",
        now=now,
        for_update=for_update,
    )


def get_table_payment_preview(db: Session, raw_token, *, now: datetime | None = None) -> PreviewResult:
    now = now or utcnow()
    resolved = _resolve(db, raw_token, now)
    if not isinstance(resolved, tuple):
        return resolved

    _, booking = resolved
    amount = deposit_amount(booking)
    return Ready(
        {
            **booking_payload(booking),
            "hold_expires_at": as_utc(booking.hold_expires_at).isoformat() if booking.hold_expires_at else None,
            "deposit_per_person": str(settings.TABLE_DEPOSIT_PER_PERSON),
            "total_amount": str(amount),
            "currency": settings.DEFAULT_CURRENCY,
            "total_display": format_money(amount, settings.DEFAULT_CURRENCY),
        }
    )


def start_table_payment_checkout(
    db: Session, raw_token, *, base_url: str | None = None, now: datetime | None = None
) -> CheckoutResult:
    """Open a Stripe Checkout for the deposit and record it as a pending payment."""
    now = now or utcnow()
    resolved = _resolve(db, raw_token, now)
    if not isinstance(resolved, tuple):
        return resolved

    token, booking = resolved
    if not payments.is_configured():
        return Blocked("payment_unavailable")

    amount = deposit_amount(booking)
    customer = db.get(Customer, booking.customer_id)
    page_url = f"{(base_url or settings.app_base_url()).rstrip('/')}/g/{raw_token}/table-payment"
    expires_at = checkout_expiry(booking, now)
    try:
        session = payments.create_checkout_session(
            idempotency_key=checkout_idempotency_key(f"table_payment_{booking.id}_{token.id}", expires_at),
            expires_at=expires_at,
            mode="payment",
            success_url=f"{page_url}?status=checkout_complete",
            cancel_url=page_url,
            amount=amount,
            currency=settings.DEFAULT_CURRENCY,
            customer_id=customer.stripe_customer_id if customer else None,
            product_name=f"Table deposit {booking.booking_reference}",
            metadata={
                "payment_kind": PAYMENT_KIND,
                "table_booking_id": str(booking.id),
                "guest_token_id": str(token.id),
            },
        )
    except payments.PaymentError:
        log.exception("table payment checkout failed booking=%s token=%s", booking.id, token_hash_prefix(raw_token))
        return Blocked("payment_unavailable")

    exists = db.execute(
        select(Payment.id).where(Payment.stripe_checkout_session_id == session.id)
    ).scalar_one_or_none()
    if exists is None:
        db.add(
            Payment(
                table_booking_id=booking.id,
                charge_type=PAYMENT_KIND,
                stripe_checkout_session_id=session.id,
                amount=amount,
                currency=settings.DEFAULT_CURRENCY,
                status=PaymentStatus.PENDING.value,
                created_at=now,
            )
        )
    db.commit()

    log.info("table payment checkout started booking=%s session=%s", booking.id, session.id)
    return CheckoutStarted(session.url, {"table_booking_id": booking.id, "checkout_session_id": session.id})


def confirm_table_payment(
    db: Session,
    *,
    table_booking_id: int,
    checkout_session_id: str | None,
    payment_intent_id: str | None,
    now: datetime | None = None,
) -> BookingConfirmation:
    """Webhook side of a deposit: confirm the booking once, whatever the delivery count."""
    now = now or utcnow()
    booking = db.execute(
        select(TableBooking).where(TableBooking.id == table_booking_id).with_for_update()
    ).scalar_one_or_none()
    if booking is None:
        return BookingConfirmation("blocked", "booking_not_found", table_booking_id)

    if checkout_session_id:
        db.execute(
            update(Payment)
            .where(
                Payment.stripe_checkout_session_id == checkout_session_id,
                Payment.status == PaymentStatus.PENDING.value,
            )
            .values(status=PaymentStatus.SUCCEEDED.value, stripe_payment_intent_id=payment_intent_id, updated_at=now)
        )

    if not mark_booking_confirmed(db, booking.id, from_status=TableBookingStatus.PENDING_PAYMENT.value, now=now):
        db.commit()
        current = db.get(TableBooking, booking.id, populate_existing=True)
        if current is not None and current.status == TableBookingStatus.CONFIRMED.value:
            return BookingConfirmation("already_confirmed", None, booking.id, booking.customer_id)
        log.warning("paid deposit for booking %s in status %s", booking.id, current.status if current else None)
        return BookingConfirmation("blocked", "booking_not_pending_payment", booking.id, booking.customer_id)

    consume_subject_tokens(db, action_type=GuestTokenAction.PAYMENT.value, now=now, table_booking_id=booking.id)
    db.commit()
    log.info("table booking %s confirmed by deposit session=%s", booking.id, checkout_session_id)
    return BookingConfirmation("confirmed", None, booking.id, booking.customer_id)


def fail_table_payment_checkout(db: Session, checkout_session_id: str, *, reason: str) -> int:
    res = db.execute(
        update(Payment)
        .where(
            Payment.stripe_checkout_session_id == checkout_session_id,
            Payment.status == PaymentStatus.PENDING.value,
        )
        .values(status=PaymentStatus.FAILED.value, reason=reason[:500], updated_at=utcnow())
    )
    db.commit()
    return res.rowcount
