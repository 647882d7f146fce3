import hashlib
import hmac
import json
import time
from datetime import timedelta

import pytest
import stripe

from backoffice.core.clock import utcnow
from backoffice.core.config import settings
from backoffice.models import CardCapture, ChargeRequest, Payment, TableBooking
from backoffice.routers import stripe_webhook
from backoffice.routers.stripe_webhook import handle_stripe_event

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture()
def webhook_secret(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_123")


def _event(event_type, obj):
    return {"id": "evt_1", "object": "event", "type": event_type, "data": {"object": obj}}


def _signed(event):
    """Body and headers exactly as Stripe would deliver them."""
    payload = json.dumps(event).encode("utf-8")
    timestamp = int(time.time())
    signature = hmac.new(
        WEBHOOK_SECRET.encode("utf-8"), f"{timestamp}.".encode("utf-8") + payload, hashlib.sha256
    ).hexdigest()
    return payload, {"stripe-signature": f"t={timestamp},v1={signature}", "content-type": "application/json"}


def _stripe_event(event_type, obj):
    return stripe.Event.construct_from(_event(event_type, obj), "sk_test_123")


def _completed_session(kind, booking_id, **extra):
    return {
        "id": "cs_test_1",
        "object": "checkout.session",
        "metadata": {"payment_kind": kind, "table_booking_id": str(booking_id)},
        **extra,
    }


def test_missing_secret_is_500(client):
    r = client.post("/api/stripe/webhook", content=b"{}")
    assert r.status_code == 500


def test_bad_signature_is_401(client, webhook_secret):
    payload, _ = _signed(_event("customer.created", {"id": "cus_1", "object": "customer"}))
    r = client.post("/api/stripe/webhook", content=payload, headers={"stripe-signature": "t=1,v1=bad"})
    assert r.status_code == 401


def test_signed_deposit_checkout_confirms_booking(client, db, make, webhook_secret):
    booking = make.booking(status="pending_payment", hold_expires_at=utcnow() + timedelta(hours=1))
    db.add(
        Payment(
            table_booking_id=booking.id,
            charge_type="table_deposit",
            stripe_checkout_session_id="cs_test_1",
            amount=20,
            currency="GBP",
            status="pending",
        )
    )
    db.commit()
    payload, headers = _signed(
        _event(
            "checkout.session.completed",
            _completed_session("table_deposit", booking.id, payment_intent="pi_dep", setup_intent=None),
        )
    )

    r = client.post("/api/stripe/webhook", content=payload, headers=headers)

    assert r.status_code == 200
    assert r.json() == {"received": True}
    db.expire_all()
    assert db.get(TableBooking, booking.id).status == "confirmed"
    payment = db.query(Payment).one()
    assert payment.status == "succeeded"
    assert payment.stripe_payment_intent_id == "pi_dep"


def test_signed_card_capture_reads_setup_intent(client, db, make, webhook_secret, monkeypatch):
    booking = make.booking(status="pending_card_capture")
    fetched = []

    def _retrieve(setup_intent_id, **params):
        fetched.append(setup_intent_id)
        return stripe.SetupIntent.construct_from(
            {"id": setup_intent_id, "object": "setup_intent", "payment_method": "pm_42", "customer": "cus_42"},
            "sk_test_123",
        )

    monkeypatch.setattr(stripe.SetupIntent, "retrieve", _retrieve)
    payload, headers = _signed(
        _event("checkout.session.completed", _completed_session("table_card_capture", booking.id, setup_intent="seti_42"))
    )

    r = client.post("/api/stripe/webhook", content=payload, headers=headers)

    assert r.status_code == 200
    assert fetched == ["seti_42"]
    db.expire_all()
    assert db.get(TableBooking, booking.id).status == "confirmed"
    capture = db.query(CardCapture).one()
    assert capture.stripe_setup_intent_id == "seti_42"
    assert capture.stripe_payment_method_id == "pm_42"


def test_signed_expired_checkout_fails_pending_payment(client, db, make, webhook_secret):
    booking = make.booking(status="pending_payment", hold_expires_at=utcnow() + timedelta(hours=1))
    db.add(
        Payment(
            table_booking_id=booking.id,
            charge_type="table_deposit",
            stripe_checkout_session_id="cs_test_1",
            amount=20,
            currency="GBP",
            status="pending",
        )
    )
    db.commit()
    payload, headers = _signed(_event("checkout.session.expired", _completed_session("table_deposit", booking.id)))

    assert client.post("/api/stripe/webhook", content=payload, headers=headers).status_code == 200
    db.expire_all()
    payment = db.query(Payment).one()
    assert payment.status == "failed"
    assert payment.reason == "checkout_session_expired"


def test_handler_failure_is_500(client, db, webhook_secret, monkeypatch):
    def _boom(db, event):
        raise RuntimeError("database went away")

    monkeypatch.setattr(stripe_webhook, "handle_stripe_event", _boom)
    payload, headers = _signed(_event("customer.created", {"id": "cus_1", "object": "customer"}))

    r = client.post("/api/stripe/webhook", content=payload, headers=headers)

    assert r.status_code == 500
    assert r.json() == {"error": "Webhook processing failed"}


def test_payment_intent_events_settle_approved_charge(db, make):
    charge = make.charge_request(manager_decision="approved", charge_status="pending")
    intent = {
        "id": "pi_late",
        "object": "payment_intent",
        "metadata": {"payment_kind": "approved_charge", "charge_request_id": str(charge.id)},
    }

    handle_stripe_event(db, _stripe_event("payment_intent.succeeded", intent))
    handle_stripe_event(
        db,
        _stripe_event(
            "payment_intent.payment_failed",
            {**intent, "last_payment_error": {"message": "card declined"}},
        ),
    )

    db.expire_all()
    stored = db.get(ChargeRequest, charge.id)
    assert stored.charge_status == "succeeded"
    assert stored.stripe_payment_intent_id == "pi_late"


def test_failed_payment_intent_records_decline_message(db, make):
    charge = make.charge_request(manager_decision="approved", charge_status="pending")
    intent = {
        "id": "pi_declined",
        "object": "payment_intent",
        "metadata": {"payment_kind": "approved_charge", "charge_request_id": str(charge.id)},
        "last_payment_error": {"message": "Your card has insufficient funds."},
    }

    handle_stripe_event(db, _stripe_event("payment_intent.payment_failed", intent))

    db.expire_all()
    stored = db.get(ChargeRequest, charge.id)
    assert stored.charge_status == "failed"
    assert stored.charge_attempt_error == "Your card has insufficient funds."


def test_unrelated_events_are_ignored(db):
    handle_stripe_event(db, _stripe_event("customer.created", {"id": "cus_1", "object": "customer"}))
    handle_stripe_event(db, _stripe_event("payment_intent.succeeded", {"id": "pi_x", "object": "payment_intent"}))
