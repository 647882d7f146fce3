from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from backoffice.core.db import get_db
from backoffice.guest.pages import (
    internal_error_page,
    page_response,
    rate_limited_page,
    redirect_to_page,
    throttled,
)
from backoffice.guest.results import AlreadyDecided, CheckoutStarted, DecisionApplied
from backoffice.models import EventBookingStatus
from backoffice.services.card_captures import get_card_capture_preview, start_card_capture_checkout
from backoffice.services.sunday_preorder import PreorderItem, get_sunday_preorder_preview, save_sunday_preorder
from backoffice.services.table_payments import get_table_payment_preview, start_table_payment_checkout
from backoffice.services.waitlist_offers import accept_waitlist_offer, get_waitlist_offer_preview

log = logging.getLogger("anchor.routers.guest")

router = APIRouter(prefix="/g", tags=["guest"])


def _show(db: Session, request: Request, token: str, *, page: str, scope: str, preview, status: str | None):
    try:
        if throttled(db, request, token, scope, action=False):
            return rate_limited_page(page)
        return page_response(page, preview(db, token), status=status)
    except Exception:
        db.rollback()
        log.exception("guest page %s failed", page)
        return internal_error_page(page)


def _checkout(db: Session, request: Request, token: str, *, page: str, scope: str, start):
    try:
        if throttled(db, request, token, scope, action=True):
            return redirect_to_page("g", token, page, "rate_limited")

        result = start(db, token)
        if isinstance(result, CheckoutStarted):
            return RedirectResponse(url=result.url, status_code=303)
        status = "confirmed" if isinstance(result, AlreadyDecided) else "error"
    except Exception:
        db.rollback()
        log.exception("guest checkout %s failed", page)
        status = "error"

    return redirect_to_page("g", token, page, status)


# ---------- Table payment ----------

@router.get("/{token}/table-payment")
def table_payment_page(token: str, request: Request, status: str | None = None, db: Session = Depends(get_db)):
    return _show(db, request, token, page="table-payment", scope="payment", preview=get_table_payment_preview, status=status)


@router.post("/{token}/table-payment/checkout")
def table_payment_checkout(token: str, request: Request, db: Session = Depends(get_db)):
    return _checkout(db, request, token, page="table-payment", scope="payment", start=start_table_payment_checkout)


# ---------- Card capture ----------

@router.get("/{token}/card-capture")
def card_capture_page(token: str, request: Request, status: str | None = None, db: Session = Depends(get_db)):
    return _show(db, request, token, page="card-capture", scope="card_capture", preview=get_card_capture_preview, status=status)


@router.post("/{token}/card-capture/checkout")
def card_capture_checkout(token: str, request: Request, db: Session = Depends(get_db)):
    return _checkout(db, request, token, page="card-capture", scope="card_capture", start=start_card_capture_checkout)


# ---------- Waitlist offer ----------

@router.get("/{token}/waitlist-offer")
def waitlist_offer_page(token: str, request: Request, status: str | None = None, db: Session = Depends(get_db)):
    return _show(
        db, request, token, page="waitlist-offer", scope="waitlist_offer", preview=get_waitlist_offer_preview, status=status
    )


@router.post("/{token}/waitlist-offer/action")
def waitlist_offer_action(token: str, request: Request, db: Session = Depends(get_db)):
    page = "waitlist-offer"
    try:
        if throttled(db, request, token, "waitlist_offer", action=True):
            return redirect_to_page("g", token, page, "rate_limited")

        result = accept_waitlist_offer(db, token)
        if isinstance(result, DecisionApplied):
            pending = result.data["booking_status"] == EventBookingStatus.PENDING_PAYMENT.value
            status = "payment_required" if pending else "confirmed"
        elif isinstance(result, AlreadyDecided):
            status = "already_decided"
        else:
            status = "error"
    except Exception:
        db.rollback()
        log.exception("waitlist offer action failed")
        status = "error"

    return redirect_to_page("g", token, page, status)


# ---------- Sunday pre-order ----------

@router.get("/{token}/sunday-preorder")
def sunday_preorder_page(token: str, request: Request, status: str | None = None, db: Session = Depends(get_db)):
    return _show(
        db, request, token, page="sunday-preorder", scope="sunday_preorder", preview=get_sunday_preorder_preview, status=status
    )


@router.post("/{token}/sunday-preorder/action")
def sunday_preorder_action(
    token: str,
    request: Request,
    menu_item_id: list[str] = Form(default=[]),
    quantity: list[str] = Form(default=[]),
    db: Session = Depends(get_db),
):
    page = "sunday-preorder"
    try:
        if throttled(db, request, token, "sunday_preorder", action=True):
            return redirect_to_page("g", token, page, "rate_limited")

        items = []
        for raw_id, raw_qty in zip(menu_item_id, quantity):
            try:
                items.append(PreorderItem(menu_item_id=int(raw_id), quantity=int(raw_qty or 0)))
            except ValueError:
                continue

        result = save_sunday_preorder(db, token, items)
        if result.state == "saved":
            status = "saved"
        elif result.reason == "submit_cutoff_passed":
            status = "cutoff"
        elif result.reason in ("empty_preorder", "invalid_menu_item", "invalid_quantity"):
            status = result.reason
        else:
            status = "error"
    except Exception:
        db.rollback()
        log.exception("sunday pre-order save failed")
        status = "error"

    return redirect_to_page("g", token, page, status)
