import os
import tempfile
from datetime import timedelta
from decimal import Decimal

_DB_DIR = tempfile.mkdtemp(prefix="backoffice-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/test.db"
os.environ["INTERNAL_API_SECRET"] = "internal-test-secret"
os.environ["CRON_SECRET"] = "cron-test-secret"
os.environ["MANAGER_CHAT_ID"] = "1001"
os.environ["APP_BASE_URL"] = "https://venue.test"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from backoffice.core.clock import utcnow  # noqa: E402
from backoffice.core.db import Base, SessionLocal, engine  # noqa: E402
from backoffice.main import app  # noqa: E402
from backoffice.models import (  # noqa: E402
    CardCapture,
    ChargeRequest,
    Customer,
    Event,
    SundayMenuItem,
    TableBooking,
    WaitlistEntry,
)
from backoffice.services import notify, payments  # noqa: E402

TestingSession = SessionLocal


@pytest.fixture()
def db():
    Base.metadata.create_all(engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture()
def session_factory(db):
    return TestingSession


@pytest.fixture()
def client(db):
    return TestClient(app)


@pytest.fixture()
def sent_messages(monkeypatch):
    """Capture manager notifications instead of calling the bot-service."""
    sent = []

    def _notify_manager(message):
        sent.append({"text": message.text, "url": message.url, "button_text": message.button_text})
        return True

    monkeypatch.setattr(notify, "notify_manager", _notify_manager)
    return sent


@pytest.fixture()
def stripe_calls(monkeypatch):
    """Stand-in for the Stripe gateway; records every call it receives."""
    calls = {"charges": [], "checkouts": []}

    def _charge(**kwargs):
        calls["charges"].append(kwargs)
        return payments.PaymentIntentResult(id=f"pi_{len(calls['charges'])}", status="succeeded")

    def _checkout(**kwargs):
        calls["checkouts"].append(kwargs)
        n = len(calls["checkouts"])
        return payments.CheckoutSessionResult(id=f"cs_test_{n}", url=f"https://checkout.stripe.test/cs_test_{n}")

    monkeypatch.setattr(payments, "is_configured", lambda: True)
    monkeypatch.setattr(payments, "create_off_session_charge", _charge)
    monkeypatch.setattr(payments, "create_checkout_session", _checkout)
    return calls


class Factory:
    def __init__(self, db):
        self.db = db
        self._refs = 0

    def customer(self, **kw):
        c = Customer(first_name=kw.pop("first_name", "Ada"), last_name=kw.pop("last_name", "Lovelace"), **kw)
        self.db.add(c)
        self.db.commit()
        return c

    def booking(self, customer=None, **kw):
        customer = customer or self.customer()
        self._refs += 1
        kw.setdefault("status", "confirmed")
        kw.setdefault("party_size", 2)
        kw.setdefault("start_datetime", utcnow() + timedelta(days=3))
        b = TableBooking(customer_id=customer.id, booking_reference=f"TB-{self._refs:04d}", **kw)
        self.db.add(b)
        self.db.commit()
        return b

    def charge_request(self, booking=None, *, amount="40.00", type="no_show", **kw):
        booking = booking or self.booking(status="no_show")
        cr = ChargeRequest(table_booking_id=booking.id, type=type, amount=Decimal(amount), currency="GBP", **kw)
        self.db.add(cr)
        self.db.commit()
        return cr

    def card_on_file(self, booking, *, payment_method_id="pm_card_1", stripe_customer_id="cus_1"):
        customer = self.db.get(Customer, booking.customer_id)
        customer.stripe_customer_id = stripe_customer_id
        self.db.add(
            CardCapture(
                table_booking_id=booking.id,
                status="completed",
                stripe_payment_method_id=payment_method_id,
                captured_at=utcnow(),
            )
        )
        self.db.commit()

    def event(self, **kw):
        kw.setdefault("name", "Quiz night")
        kw.setdefault("start_datetime", utcnow() + timedelta(days=5))
        kw.setdefault("capacity", 10)
        e = Event(**kw)
        self.db.add(e)
        self.db.commit()
        return e

    def waitlist_entry(self, event, customer=None, *, seats=2, **kw):
        customer = customer or self.customer()
        entry = WaitlistEntry(event_id=event.id, customer_id=customer.id, requested_seats=seats, **kw)
        self.db.add(entry)
        self.db.commit()
        return entry

    def menu_item(self, name, price, item_type="main", **kw):
        item = SundayMenuItem(name=name, price=Decimal(price), item_type=item_type, **kw)
        self.db.add(item)
        self.db.commit()
        return item


@pytest.fixture()
def make(db):
    return Factory(db)


def raw_token_from(url: str) -> str:
    """Pull the raw token out of a /g/{token}/... or /m/{token}/... link."""
    path = url.split("://", 1)[-1].split("/", 1)[1]
    return path.split("/")[1]
