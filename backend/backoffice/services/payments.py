"""Thin Stripe gateway: off-session charges, Checkout sessions, webhook verification."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

import stripe

from backoffice.core.config import settings

log = logging.getLogger("anchor.payments")


class PaymentError(Exception):
    """Raised when a payment gateway call fails."""


@dataclass
class PaymentIntentResult:
    id: str
    status: str | None
    error_message: str | None = None


@dataclass
class CheckoutSessionResult:
    id: str
    url: str


@dataclass
class SetupIntentResult:
    id: str
    payment_method_id: str | None
    customer_id: str | None


def stripe_field(obj, key: str, default=None):
    """Read an optional key from a StripeObject (or a plain dict) without dict methods."""
    if obj is None or key not in obj:
        return default
    value = obj[key]
    return default if value is None else value


def object_id(value) -> str | None:
    # expandable fields come back as either an id or the expanded object
    if value is None or isinstance(value, str):
        return value
    return stripe_field(value, "id")


def is_configured() -> bool:
    return settings.stripe_configured()


def to_minor_units(amount: Decimal) -> int:
    return int(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) * 100)


def _normalize_currency(currency: str | None) -> str:
    return (currency or settings.DEFAULT_CURRENCY).strip().lower() or "gbp"


def _api_key() -> str:
    if not is_configured():
        raise PaymentError("Stripe is not configured. Set STRIPE_SECRET_KEY.")
    return settings.STRIPE_SECRET_KEY.strip()


def create_off_session_charge(
    *,
    idempotency_key: str,
    amount: Decimal,
    currency: str,
    customer_id: str,
    payment_method_id: str,
    metadata: dict[str, str] | None = None,
) -> PaymentIntentResult:
    """Charge a saved card without the cardholder present.

    A declined card still yields a PaymentIntent; it is returned (with its
    status and the decline message) instead of raising, so the caller can
    record exactly what Stripe holds.
    """
    amount_minor = to_minor_units(amount)
    if amount_minor <= 0:
        raise PaymentError("Charge amount must be positive")

    customer_id = (customer_id or "").strip()
    payment_method_id = (payment_method_id or "").strip()
    if not customer_id or not payment_method_id:
        raise PaymentError("Charge requires a customer and a payment method")

    try:
        intent = stripe.PaymentIntent.create(
            api_key=_api_key(),
            idempotency_key=idempotency_key,
            amount=amount_minor,
            currency=_normalize_currency(currency),
            customer=customer_id,
            payment_method=payment_method_id,
            off_session=True,
            confirm=True,
            metadata=metadata or {},
        )
    except stripe.CardError as e:
        failed_intent = stripe_field(e.error, "payment_intent") if e.error is not None else None
        if failed_intent is not None and not isinstance(failed_intent, str):
            return PaymentIntentResult(
                id=failed_intent["id"],
                status=stripe_field(failed_intent, "status"),
                error_message=e.user_message or str(e),
            )
        raise PaymentError(f"Card declined: {e.user_message or e}") from e
    except stripe.StripeError as e:
        raise PaymentError(f"Stripe error: {e}") from e

    return PaymentIntentResult(id=intent["id"], status=stripe_field(intent, "status"))


def create_checkout_session(
    *,
    idempotency_key: str,
    mode: str,
    success_url: str,
    cancel_url: str,
    metadata: dict[str, str],
    customer_id: str | None = None,
    amount: Decimal | None = None,
    currency: str | None = None,
    product_name: str = "Table booking",
    expires_at: datetime | None = None,
) -> CheckoutSessionResult:
    """mode="payment" takes ``amount`` now; mode="setup" only saves a card.

    ``expires_at`` must be 30 minutes to 24 hours ahead; Stripe rejects anything else.
    """
    params: dict = {
        "mode": mode,
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": metadata,
    }
    if customer_id:
        params["customer"] = customer_id
    if expires_at is not None:
        params["expires_at"] = int(expires_at.timestamp())

    if mode == "payment":
        amount_minor = to_minor_units(amount or Decimal("0"))
        if amount_minor <= 0:
            raise PaymentError("Checkout amount must be positive")
        params["line_items"] = [
            {
                "price_data": {
                    "currency": _normalize_currency(currency),
                    "unit_amount": amount_minor,
                    "product_data": {"name": product_name[:120] or "Table booking"},
                },
                "quantity": 1,
            }
        ]
        params["payment_intent_data"] = {"metadata": metadata}
    elif mode == "setup":
        params["payment_method_types"] = ["card"]
        params["setup_intent_data"] = {"metadata": metadata}
    else:
        raise PaymentError(f"Unsupported checkout mode: {mode}")

    try:
        session = stripe.checkout.Session.create(api_key=_api_key(), idempotency_key=idempotency_key, **params)
    except stripe.StripeError as e:
        raise PaymentError(f"Stripe error: {e}") from e

    return CheckoutSessionResult(id=session["id"], url=session["url"])


def retrieve_setup_intent(setup_intent_id: str) -> SetupIntentResult:
    try:
        intent = stripe.SetupIntent.retrieve(setup_intent_id, api_key=_api_key())
    except stripe.StripeError as e:
        raise PaymentError(f"Stripe error: {e}") from e

    return SetupIntentResult(
        id=intent["id"],
        payment_method_id=object_id(stripe_field(intent, "payment_method")),
        customer_id=object_id(stripe_field(intent, "customer")),
    )


def construct_webhook_event(payload: bytes, signature: str | None):
    """Verify the Stripe-Signature header. Raises PaymentError on any mismatch."""
    secret = (settings.STRIPE_WEBHOOK_SECRET or "").strip()
    if not secret:
        raise PaymentError("STRIPE_WEBHOOK_SECRET is not configured")
    try:
        return stripe.Webhook.construct_event(payload, signature or "", secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        raise PaymentError(f"Invalid webhook: {e}") from e
