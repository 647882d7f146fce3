from datetime import datetime, timezone
from decimal import Decimal

import pytest
import stripe

from backoffice.core.config import settings
from backoffice.services import payments


@pytest.fixture(autouse=True)
def stripe_key(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_123")


def _charge(**overrides):
    kwargs = {
        "idempotency_key": "charge_request_1",
        "amount": Decimal("45.00"),
        "currency": "GBP",
        "customer_id": "cus_1",
        "payment_method_id": "pm_1",
    }
    kwargs.update(overrides)
    return payments.create_off_session_charge(**kwargs)


def test_off_session_charge_reads_intent_status(monkeypatch):
    sent = {}

    def _create(**params):
        sent.update(params)
        return stripe.PaymentIntent.construct_from(
            {"id": "pi_1", "object": "payment_intent", "status": "succeeded"}, "sk_test_123"
        )

    monkeypatch.setattr(stripe.PaymentIntent, "create", _create)

    result = _charge()

    assert result == payments.PaymentIntentResult(id="pi_1", status="succeeded")
    assert sent["amount"] == 4500
    assert sent["currency"] == "gbp"
    assert sent["off_session"] is True


def test_declined_card_returns_the_failed_intent(monkeypatch):
    def _create(**params):
        raise stripe.CardError(
            "Your card was declined.",
            None,
            "card_declined",
            json_body={
                "error": {
                    "type": "card_error",
                    "message": "Your card was declined.",
                    "payment_intent": {
                        "id": "pi_declined",
                        "object": "payment_intent",
                        "status": "requires_payment_method",
                    },
                }
            },
        )

    monkeypatch.setattr(stripe.PaymentIntent, "create", _create)

    result = _charge()

    assert result.id == "pi_declined"
    assert result.status == "requires_payment_method"
    assert result.error_message == "Your card was declined."


def test_declined_card_without_intent_raises(monkeypatch):
    def _create(**params):
        raise stripe.CardError("Your card was declined.", None, "card_declined")

    monkeypatch.setattr(stripe.PaymentIntent, "create", _create)

    with pytest.raises(payments.PaymentError):
        _charge()


def test_charge_needs_a_saved_card():
    with pytest.raises(payments.PaymentError):
        _charge(payment_method_id="")


def test_setup_intent_handles_expanded_payment_method(monkeypatch):
    def _retrieve(setup_intent_id, **params):
        return stripe.SetupIntent.construct_from(
            {
                "id": setup_intent_id,
                "object": "setup_intent",
                "payment_method": {"id": "pm_9", "object": "payment_method"},
                "customer": None,
            },
            "sk_test_123",
        )

    monkeypatch.setattr(stripe.SetupIntent, "retrieve", _retrieve)

    result = payments.retrieve_setup_intent("seti_9")

    assert result == payments.SetupIntentResult(id="seti_9", payment_method_id="pm_9", customer_id=None)


def test_checkout_session_passes_expiry(monkeypatch):
    sent = {}

    def _create(**params):
        sent.update(params)
        return stripe.checkout.Session.construct_from(
            {"id": "cs_1", "object": "checkout.session", "url": "https://checkout.stripe.test/cs_1"}, "sk_test_123"
        )

    monkeypatch.setattr(stripe.checkout.Session, "create", _create)
    expires_at = datetime(2026, 5, 3, 12, 0, tzinfo=timezone.utc)

    result = payments.create_checkout_session(
        idempotency_key="table_payment_1_1",
        mode="payment",
        success_url="https://venue.test/ok",
        cancel_url="https://venue.test/back",
        metadata={"payment_kind": "table_deposit"},
        amount=Decimal("20.00"),
        expires_at=expires_at,
    )

    assert result == payments.CheckoutSessionResult(id="cs_1", url="https://checkout.stripe.test/cs_1")
    assert sent["expires_at"] == int(expires_at.timestamp())
    assert sent["line_items"][0]["price_data"]["unit_amount"] == 2000


def test_stripe_field_reads_stripe_objects():
    intent = stripe.PaymentIntent.construct_from({"id": "pi_1", "object": "payment_intent", "status": None}, "k")
    assert payments.stripe_field(intent, "status", "unknown") == "unknown"
    assert payments.stripe_field(intent, "missing") is None
    assert payments.stripe_field(None, "id") is None
