from datetime import timedelta

from backoffice.core.clock import utcnow
from backoffice.guest.results import Blocked, Ready
from backoffice.models import TableBooking, TableBookingItem
from backoffice.services.sunday_preorder import (
    PreorderItem,
    create_sunday_preorder_link,
    get_sunday_preorder_preview,
    save_sunday_preorder,
    submit_deadline,
)
from conftest import raw_token_from


def _sunday_booking(make, **kw):
    kw.setdefault("start_datetime", utcnow() + timedelta(days=4))
    return make.booking(booking_type="sunday_lunch", **kw)


def test_deadline_is_earlier_of_notice_and_cutoff(make):
    start = utcnow() + timedelta(days=4)
    plain = _sunday_booking(make, start_datetime=start)
    assert submit_deadline(plain) == start - timedelta(hours=24)

    cutoff = start - timedelta(days=2)
    early = _sunday_booking(make, start_datetime=start, sunday_preorder_cutoff_at=cutoff)
    assert submit_deadline(early) == cutoff


def test_preview_lists_menu(db, make):
    make.menu_item("Roast beef", "18.50")
    make.menu_item("Yorkshire pudding", "3.00", item_type="side")
    make.menu_item("Old special", "9.00", is_active=False)
    booking = _sunday_booking(make)
    url, _ = create_sunday_preorder_link(db, booking)

    preview = get_sunday_preorder_preview(db, raw_token_from(url))

    assert isinstance(preview, Ready)
    assert preview.data["can_submit"] is True
    assert [m["name"] for m in preview.data["menu_items"]] == ["Roast beef", "Yorkshire pudding"]
    assert preview.data["existing_items"] == []


def test_save_replaces_lines_and_can_be_repeated(db, make):
    beef = make.menu_item("Roast beef", "18.50")
    veg = make.menu_item("Nut roast", "16.00")
    booking = _sunday_booking(make)
    url, _ = create_sunday_preorder_link(db, booking)
    raw = raw_token_from(url)

    first = save_sunday_preorder(db, raw, [PreorderItem(beef.id, 2), PreorderItem(beef.id, 1)])
    second = save_sunday_preorder(db, raw, [PreorderItem(veg.id, 1), PreorderItem(beef.id, 0)])

    assert first.state == "saved" and first.item_count == 1
    assert second.state == "saved" and second.item_count == 1
    lines = db.query(TableBookingItem).all()
    assert [(line.name_snapshot, line.quantity) for line in lines] == [("Nut roast", 1)]
    db.expire_all()
    assert db.get(TableBooking, booking.id).sunday_preorder_completed_at is not None

    preview = get_sunday_preorder_preview(db, raw)
    assert preview.data["existing_items"][0]["price"] == "16.00"


def test_save_after_deadline_is_blocked(db, make):
    dish = make.menu_item("Roast beef", "18.50")
    start = utcnow() + timedelta(days=2)
    booking = _sunday_booking(make, start_datetime=start)
    url, _ = create_sunday_preorder_link(db, booking)
    raw = raw_token_from(url)
    late = start - timedelta(hours=23)

    result = save_sunday_preorder(db, raw, [PreorderItem(dish.id, 1)], now=late)

    assert result.state == "blocked"
    assert result.reason == "submit_cutoff_passed"
    assert get_sunday_preorder_preview(db, raw, now=late).data["can_submit"] is False
    assert db.query(TableBookingItem).count() == 0


def test_save_rejects_empty_and_unknown_dishes(db, make):
    retired = make.menu_item("Old special", "9.00", is_active=False)
    booking = _sunday_booking(make)
    url, _ = create_sunday_preorder_link(db, booking)
    raw = raw_token_from(url)

    assert save_sunday_preorder(db, raw, []).reason == "empty_preorder"
    assert save_sunday_preorder(db, raw, [PreorderItem(retired.id, 1)]).reason == "invalid_menu_item"


def test_only_active_sunday_bookings(db, make):
    regular = make.booking(booking_type="regular")
    url, _ = create_sunday_preorder_link(db, regular)
    assert get_sunday_preorder_preview(db, raw_token_from(url)) == Blocked("not_sunday_lunch")

    cancelled = _sunday_booking(make, status="cancelled")
    url, _ = create_sunday_preorder_link(db, cancelled)
    assert get_sunday_preorder_preview(db, raw_token_from(url)) == Blocked("booking_not_active")


def test_save_rejects_oversized_quantities(db, make):
    dish = make.menu_item("Roast beef", "18.50")
    booking = _sunday_booking(make)
    url, _ = create_sunday_preorder_link(db, booking)
    raw = raw_token_from(url)

    merged = save_sunday_preorder(db, raw, [PreorderItem(dish.id, 30), PreorderItem(dish.id, 30)])
    huge = save_sunday_preorder(db, raw, [PreorderItem(dish.id, 10**12)])

    assert merged.reason == "invalid_quantity"
    assert huge.reason == "invalid_quantity"
    assert db.query(TableBookingItem).count() == 0
    assert save_sunday_preorder(db, raw, [PreorderItem(dish.id, 50)]).state == "saved"
