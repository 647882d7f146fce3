from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.core.db import get_db
from backoffice.services import payments
from backoffice.services.card_captures import PAYMENT_KIND as CARD_CAPTURE_KIND
from backoffice.services.card_captures import complete_card_capture
from backoffice.services.charge_approvals import settle_approved_charge
from backoffice.services.payments import object_id
from backoffice.services.payments import stripe_field as field
from backoffice.services.table_payments import PAYMENT_KIND as TABLE_DEPOSIT_KIND
from backoffice.services.table_payments import confirm_table_payment, fail_table_payment_checkout

log = logging.getLogger("anchor.stripe_webhook")

router = APIRouter(prefix="/api/stripe", tags=["stripe"])


def _as_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _checkout_completed(db: Session, session) -> None:
    metadata = field(session, "metadata")
    kind = field(metadata, "payment_kind")
    session_id = field(session, "id")
    booking_id = _as_int(field(metadata, "table_booking_id") or field(session, "client_reference_id"))
    if booking_id is None:
        log.info("checkout session %s has no table booking; ignored", session_id)
        return

    if kind == TABLE_DEPOSIT_KIND:
        result = confirm_table_payment(
            db,
            table_booking_id=booking_id,
            checkout_session_id=session_id,
            payment_intent_id=object_id(field(session, "payment_intent")),
        )
        log.info("deposit checkout %s -> %s", session_id, result.state)
        return

    if kind == CARD_CAPTURE_KIND:
        setup_intent_id = object_id(field(session, "setup_intent"))
        payment_method_id = None
        customer_id = None
        if setup_intent_id:
            try:
                setup_intent = payments.retrieve_setup_intent(setup_intent_id)
                payment_method_id = setup_intent.payment_method_id
                customer_id = setup_intent.customer_id
            except payments.PaymentError:
                log.warning("could not fetch setup intent %s for booking %s", setup_intent_id, booking_id)

        result = complete_card_capture(
            db,
            table_booking_id=booking_id,
            setup_intent_id=setup_intent_id,
            payment_method_id=payment_method_id,
            stripe_customer_id=customer_id,
        )
        log.info("card capture checkout %s -> %s", session_id, result.state)


def _checkout_failed(db: Session, session, failure_type: str) -> None:
    session_id = field(session, "id")
    if field(field(session, "metadata"), "payment_kind") == TABLE_DEPOSIT_KIND and session_id:
        fail_table_payment_checkout(db, session_id, reason=failure_type)


def _payment_intent_event(db: Session, intent, event_type: str) -> None:
    metadata = field(intent, "metadata")
    if field(metadata, "payment_kind") != "approved_charge":
        return
    charge_request_id = _as_int(field(metadata, "charge_request_id"))
    intent_id = field(intent, "id")
    if charge_request_id is None or not intent_id:
        return

    succeeded = event_type == "payment_intent.succeeded"
    error = None
    if not succeeded:
        error = field(field(intent, "last_payment_error"), "message") or "payment_failed"
    settle_approved_charge(
        db,
        charge_request_id=charge_request_id,
        payment_intent_id=intent_id,
        succeeded=succeeded,
        error_message=error,
    )


def handle_stripe_event(db: Session, event) -> None:
    event_type = field(event, "type")
    obj = field(field(event, "data"), "object")
    if obj is None:
        return

    if event_type == "checkout.session.completed":
        _checkout_completed(db, obj)
    elif event_type == "checkout.session.expired":
        _checkout_failed(db, obj, "checkout_session_expired")
    elif event_type == "checkout.session.async_payment_failed":
        _checkout_failed(db, obj, "checkout_session_async_failed")
    elif event_type in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        _payment_intent_event(db, obj, event_type)


@router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    if not (settings.STRIPE_WEBHOOK_SECRET or "").strip():
        return JSONResponse(status_code=500, content={"error": "STRIPE_WEBHOOK_SECRET not configured"})

    payload = await request.body()
    try:
        event = payments.construct_webhook_event(payload, request.headers.get("stripe-signature"))
    except payments.PaymentError:
        log.warning("stripe webhook rejected: bad signature")
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})

    event_id = field(event, "id")
    event_type = field(event, "type")
    try:
        await run_in_threadpool(handle_stripe_event, db, event)
    except Exception:
        db.rollback()
        log.exception("stripe webhook %s (%s) failed", event_id, event_type)
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    return {"received": True}
