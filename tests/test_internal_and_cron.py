from datetime import timedelta

from backoffice.core.clock import utcnow
from backoffice.models import IdempotencyKey
from backoffice.services import notify

INTERNAL = {"X-Internal-Secret": "internal-test-secret"}
CRON = {"Authorization": "Bearer cron-test-secret"}


def test_internal_requires_secret(client, make):
    charge = make.charge_request()
    assert client.post(f"/internal/charge-requests/{charge.id}/send-approval").status_code == 401
    r = client.post(f"/internal/charge-requests/{charge.id}/send-approval", headers={"X-Internal-Secret": "wrong"})
    assert r.status_code == 401


def test_send_approval(client, make, sent_messages):
    charge = make.charge_request()
    r = client.post(f"/internal/charge-requests/{charge.id}/send-approval", headers=INTERNAL)
    assert r.status_code == 200
    assert r.json() == {"ok": True, "sent": True}
    assert "/m/" in sent_messages[0]["url"]

    assert client.post("/internal/charge-requests/999/send-approval", headers=INTERNAL).status_code == 404


def test_send_approval_delivery_failure_is_502(client, make, monkeypatch):
    monkeypatch.setattr(notify, "notify_manager", lambda *a, **kw: False)
    charge = make.charge_request()
    r = client.post(f"/internal/charge-requests/{charge.id}/send-approval", headers=INTERNAL)
    assert r.status_code == 502


def test_booking_links(client, make):
    pending = make.booking(status="pending_payment", hold_expires_at=utcnow() + timedelta(hours=2), party_size=3)
    r = client.post(f"/internal/table-bookings/{pending.id}/payment-link", headers=INTERNAL)
    assert r.status_code == 200
    assert r.json()["total_amount"] == "30.00"
    assert "/table-payment" in r.json()["url"]

    assert client.post(f"/internal/table-bookings/{pending.id}/card-capture-link", headers=INTERNAL).status_code == 409
    assert client.post(f"/internal/table-bookings/{pending.id}/sunday-preorder-link", headers=INTERNAL).status_code == 409
    assert client.post("/internal/table-bookings/999/payment-link", headers=INTERNAL).status_code == 404


def test_offer_next_endpoint(client, make):
    event = make.event(capacity=4)
    make.waitlist_entry(event, seats=2)
    r = client.post(f"/internal/events/{event.id}/waitlist/offer-next", headers=INTERNAL)
    assert r.status_code == 200
    assert r.json()["state"] == "offered"
    assert r.json()["seats_held"] == 2
    assert client.post("/internal/events/999/waitlist/offer-next", headers=INTERNAL).status_code == 404


def test_cron_requires_bearer(client):
    assert client.get("/api/cron/charge-approvals-digest?force=true").status_code == 401


def test_digest_sends_once_per_day(client, db, make, sent_messages):
    make.charge_request(amount="45.00")

    first = client.get("/api/cron/charge-approvals-digest?force=true", headers=CRON)
    second = client.get("/api/cron/charge-approvals-digest?force=true", headers=CRON)

    assert first.json()["sent"] is True
    assert second.json()["sent"] is False
    assert second.json()["reason"] == "already_processed_or_in_progress"
    assert len(sent_messages) == 1
    assert "£45.00" in sent_messages[0]["text"]
    assert db.query(IdempotencyKey).one().state == "completed"


def test_digest_with_nothing_pending(client, db, sent_messages):
    r = client.get("/api/cron/charge-approvals-digest?force=true", headers=CRON)
    assert r.json()["reason"] == "nothing_pending"
    assert sent_messages == []


def test_failed_digest_releases_claim(client, db, make, monkeypatch):
    make.charge_request()
    monkeypatch.setattr(notify, "notify_manager", lambda *a, **kw: False)

    r = client.get("/api/cron/charge-approvals-digest?force=true", headers=CRON)

    assert r.status_code == 502
    assert db.query(IdempotencyKey).count() == 0
