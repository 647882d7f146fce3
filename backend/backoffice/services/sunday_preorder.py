"""Sunday lunch pre-orders.

Unlike the other guest links this one is not single-use: the guest may come
back and change the order until the submit deadline, which is the earlier of
24h before the booking and the booking's own pre-order cutoff.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from backoffice.core.clock import as_utc, to_money, utcnow
from backoffice.core.config import settings
from backoffice.guest.results import Blocked, PreviewResult, Ready
from backoffice.guest.tokens import create_guest_token, find_guest_token, token_block_reason
from backoffice.models import (
    GuestTokenAction,
    SundayMenuItem,
    TableBooking,
    TableBookingItem,
    TableBookingStatus,
    TableBookingType,
)

log = logging.getLogger("anchor.sunday_preorder")

CANCELLATION_NOTICE = timedelta(hours=24)
MAX_QUANTITY_PER_DISH = 50
_INACTIVE_STATUSES = (TableBookingStatus.CANCELLED.value, TableBookingStatus.NO_SHOW.value)


@dataclass(frozen=True)
class PreorderItem:
    menu_item_id: int
    quantity: int


@dataclass(frozen=True)
class PreorderSaveResult:
    state: str  # saved | blocked
    reason: str | None = None
    table_booking_id: int | None = None
    item_count: int = 0


def compute_token_expiry(booking_start: datetime | None, now: datetime) -> datetime:
    cap = now + timedelta(days=30)
    if booking_start is None:
        return min(now + timedelta(days=14), cap)
    return min(max(as_utc(booking_start) + timedelta(hours=48), now + timedelta(hours=1)), cap)


def submit_deadline(booking: TableBooking) -> datetime:
    deadline = as_utc(booking.start_datetime) - CANCELLATION_NOTICE
    cutoff = as_utc(booking.sunday_preorder_cutoff_at)
    if cutoff is not None and cutoff < deadline:
        return cutoff
    return deadline


def create_sunday_preorder_link(
    db: Session, booking: TableBooking, *, base_url: str | None = None, now: datetime | None = None
) -> tuple[str, datetime]:
    now = now or utcnow()
    issued = create_guest_token(
        db,
        customer_id=booking.customer_id,
        action_type=GuestTokenAction.SUNDAY_PREORDER.value,
        table_booking_id=booking.id,
        expires_at=compute_token_expiry(booking.start_datetime, now),
    )
    db.commit()
    url = f"{(base_url or settings.app_base_url()).rstrip('/')}/g/{issued.raw_token}/sunday-preorder"
    return url, issued.expires_at


def active_menu(db: Session) -> list[SundayMenuItem]:
    return list(
        db.scalars(
            select(SundayMenuItem)
            .where(SundayMenuItem.is_active.is_(True))
            .order_by(SundayMenuItem.item_type, SundayMenuItem.sort_order, SundayMenuItem.name)
        ).all()
    )


def _resolve(db: Session, raw_token, now: datetime) -> Blocked | TableBooking:
    token = find_guest_token(db, raw_token, GuestTokenAction.SUNDAY_PREORDER.value)
    reason = token_block_reason(token, now)
    if reason:
        return Blocked(reason)
    if token.table_booking_id is None:
        return Blocked("invalid_token")

    booking = db.get(TableBooking, token.table_booking_id)
    if booking is None:
        return Blocked("booking_not_found")
    if booking.customer_id != token.customer_id:
        return Blocked("token_customer_mismatch")
    if booking.booking_type != TableBookingType.SUNDAY_LUNCH.value:
        return Blocked("not_sunday_lunch")
    if booking.status in _INACTIVE_STATUSES:
        return Blocked("booking_not_active")
    return booking


def get_sunday_preorder_preview(db: Session, raw_token, *, now: datetime | None = None) -> PreviewResult:
    now = now or utcnow()
    resolved = _resolve(db, raw_token, now)
    if isinstance(resolved, Blocked):
        return resolved

    booking = resolved
    deadline = submit_deadline(booking)
    existing = db.scalars(
        select(TableBookingItem).where(TableBookingItem.booking_id == booking.id).order_by(TableBookingItem.id)
    ).all()

    return Ready(
        {
            "table_booking_id": booking.id,
            "booking_reference": booking.booking_reference,
            "start_datetime": as_utc(booking.start_datetime).isoformat(),
            "party_size": booking.party_size,
            "status": booking.status,
            "can_submit": now < deadline,
            "submit_deadline_at": deadline.isoformat(),
            "sunday_preorder_completed_at": (
                as_utc(booking.sunday_preorder_completed_at).isoformat()
                if booking.sunday_preorder_completed_at
                else None
            ),
            "existing_items": [
                {
                    "menu_item_id": i.menu_item_id,
                    "name": i.name_snapshot,
                    "price": str(i.price_snapshot),
                    "quantity": i.quantity,
                    "item_type": i.item_type,
                }
                for i in existing
            ],
            "menu_items": [
                {"menu_item_id": m.id, "name": m.name, "price": str(m.price), "item_type": m.item_type}
                for m in active_menu(db)
            ],
        }
    )


def _merge_quantities(items: list[PreorderItem]) -> dict[int, int]:
    merged: dict[int, int] = {}
    for item in items:
        if item.quantity <= 0:
            continue
        merged[item.menu_item_id] = merged.get(item.menu_item_id, 0) + item.quantity
    return merged


def save_sunday_preorder(
    db: Session, raw_token, items: list[PreorderItem], *, now: datetime | None = None
) -> PreorderSaveResult:
    """Replace the booking's pre-order lines with ``items``, priced from the current menu."""
    now = now or utcnow()
    resolved = _resolve(db, raw_token, now)
    if isinstance(resolved, Blocked):
        return PreorderSaveResult(state="blocked", reason=resolved.reason)

    booking = resolved
    if now >= submit_deadline(booking):
        return PreorderSaveResult(state="blocked", reason="submit_cutoff_passed", table_booking_id=booking.id)

    quantities = _merge_quantities(items)
    if not quantities:
        return PreorderSaveResult(state="blocked", reason="empty_preorder", table_booking_id=booking.id)
    if any(q > MAX_QUANTITY_PER_DISH for q in quantities.values()):
        return PreorderSaveResult(state="blocked", reason="invalid_quantity", table_booking_id=booking.id)

    menu = {m.id: m for m in active_menu(db)}
    if any(menu_item_id not in menu for menu_item_id in quantities):
        return PreorderSaveResult(state="blocked", reason="invalid_menu_item", table_booking_id=booking.id)

    db.execute(delete(TableBookingItem).where(TableBookingItem.booking_id == booking.id))
    for menu_item_id, quantity in quantities.items():
        dish = menu[menu_item_id]
        db.add(
            TableBookingItem(
                booking_id=booking.id,
                menu_item_id=dish.id,
                name_snapshot=dish.name,
                price_snapshot=to_money(dish.price),
                quantity=quantity,
                item_type=dish.item_type,
            )
        )
    db.execute(
        update(TableBooking)
        .where(TableBooking.id == booking.id)
        .values(sunday_preorder_completed_at=now, updated_at=now)
    )
    db.commit()

    log.info("sunday pre-order saved booking=%s lines=%s", booking.id, len(quantities))
    return PreorderSaveResult(state="saved", table_booking_id=booking.id, item_count=len(quantities))
