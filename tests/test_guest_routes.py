from datetime import timedelta
from urllib.parse import parse_qs, urlparse

from backoffice.core.clock import utcnow
from backoffice.core.config import settings
from backoffice.models import ChargeRequest, TableBookingItem
from backoffice.services.charge_approvals import send_manager_charge_approval
from backoffice.services.sunday_preorder import create_sunday_preorder_link
from backoffice.services.table_payments import create_table_payment_link
from backoffice.services.waitlist_offers import create_next_waitlist_offer
from conftest import raw_token_from


def _status(response):
    return parse_qs(urlparse(response.headers["location"]).query)["status"][0]


def test_unknown_token_renders_blocked_page(client):
    r = client.get("/m/not-a-token/charge-request")
    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "blocked"
    assert body["reason"] == "invalid_token"
    assert body["message"] == "This link is not valid."


def test_charge_page_then_waive(client, db, make, sent_messages):
    charge = make.charge_request(amount="35.00")
    link = send_manager_charge_approval(db, charge.id)
    raw = raw_token_from(link.approval_url)

    page = client.get(f"/m/{raw}/charge-request")
    assert page.status_code == 200
    assert page.json()["state"] == "ready"
    assert page.json()["amount"] == "35.00"

    r = client.post(f"/m/{raw}/charge-request/action", data={"decision": "waive"}, follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"].startswith(f"/m/{raw}/charge-request?")
    assert _status(r) == "waived"

    again = client.post(f"/m/{raw}/charge-request/action", data={"decision": "waive"}, follow_redirects=False)
    assert _status(again) == "already_decided"

    done = client.get(f"/m/{raw}/charge-request?status=waived").json()
    assert done["state"] == "already_decided"
    assert done["banner"] == "Charge request waived."
    db.expire_all()
    assert db.get(ChargeRequest, charge.id).manager_decision == "waived"


def test_high_value_approval_needs_checkbox(client, db, make, sent_messages, stripe_calls):
    booking = make.booking(status="no_show", party_size=2)
    make.card_on_file(booking)
    charge = make.charge_request(booking=booking, amount="220.00")
    raw = raw_token_from(send_manager_charge_approval(db, charge.id).approval_url)

    missing = client.post(
        f"/m/{raw}/charge-request/action",
        data={"decision": "approve", "confirm_amount": "220.00"},
        follow_redirects=False,
    )
    assert _status(missing) == "threshold_confirmation_required"

    ok = client.post(
        f"/m/{raw}/charge-request/action",
        data={"decision": "approve", "confirm_amount": "220.00", "threshold_confirmed": "on"},
        follow_redirects=False,
    )
    assert _status(ok) == "approved_succeeded"
    assert len(stripe_calls["charges"]) == 1


def test_view_budget_returns_429(client, monkeypatch):
    monkeypatch.setattr(settings, "GUEST_TOKEN_VIEW_MAX_ATTEMPTS", 1)
    assert client.get("/g/some-token/table-payment").status_code == 200
    r = client.get("/g/some-token/table-payment")
    assert r.status_code == 429
    assert r.json()["reason"] == "rate_limited"


def test_action_budget_redirects_rate_limited(client, monkeypatch):
    monkeypatch.setattr(settings, "GUEST_TOKEN_ACTION_MAX_ATTEMPTS", 1)
    client.post("/g/some-token/waitlist-offer/action", follow_redirects=False)
    r = client.post("/g/some-token/waitlist-offer/action", follow_redirects=False)
    assert _status(r) == "rate_limited"


def test_table_payment_checkout_redirects_to_stripe(client, db, make, stripe_calls):
    booking = make.booking(status="pending_payment", hold_expires_at=utcnow() + timedelta(hours=1))
    url, _ = create_table_payment_link(db, booking)
    raw = raw_token_from(url)

    r = client.post(f"/g/{raw}/table-payment/checkout", follow_redirects=False)

    assert r.status_code == 303
    assert r.headers["location"] == "https://checkout.stripe.test/cs_test_1"


def test_table_payment_checkout_without_stripe_is_error(client, db, make):
    booking = make.booking(status="pending_payment", hold_expires_at=utcnow() + timedelta(hours=1))
    url, _ = create_table_payment_link(db, booking)
    raw = raw_token_from(url)

    r = client.post(f"/g/{raw}/table-payment/checkout", follow_redirects=False)
    assert _status(r) == "error"


def test_waitlist_accept_route(client, db, make):
    event = make.event(capacity=5)
    make.waitlist_entry(event, seats=2)
    raw = raw_token_from(create_next_waitlist_offer(db, event.id).url)

    assert client.get(f"/g/{raw}/waitlist-offer").json()["state"] == "ready"
    r = client.post(f"/g/{raw}/waitlist-offer/action", follow_redirects=False)
    assert _status(r) == "confirmed"
    again = client.post(f"/g/{raw}/waitlist-offer/action", follow_redirects=False)
    assert _status(again) == "already_decided"


def test_sunday_preorder_route(client, db, make):
    beef = make.menu_item("Roast beef", "18.50")
    pud = make.menu_item("Sticky toffee pudding", "6.00", item_type="extra")
    booking = make.booking(booking_type="sunday_lunch", start_datetime=utcnow() + timedelta(days=4))
    url, _ = create_sunday_preorder_link(db, booking)
    raw = raw_token_from(url)

    r = client.post(
        f"/g/{raw}/sunday-preorder/action",
        data={"menu_item_id": [str(beef.id), str(pud.id)], "quantity": ["2", "1"]},
        follow_redirects=False,
    )

    assert _status(r) == "saved"
    assert db.query(TableBookingItem).count() == 2
    page = client.get(f"/g/{raw}/sunday-preorder?status=saved").json()
    assert page["banner"] == "Your pre-order has been saved."
    assert len(page["existing_items"]) == 2

    empty = client.post(f"/g/{raw}/sunday-preorder/action", data={}, follow_redirects=False)
    assert _status(empty) == "empty_preorder"

    huge = client.post(
        f"/g/{raw}/sunday-preorder/action",
        data={"menu_item_id": [str(beef.id)], "quantity": ["99999999999"]},
        follow_redirects=False,
    )
    assert _status(huge) == "invalid_quantity"
    assert db.query(TableBookingItem).count() == 2


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
