from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form, Request
from sqlalchemy.orm import Session

from backoffice.core.db import get_db
from backoffice.guest.pages import (
    internal_error_page,
    page_response,
    rate_limited_page,
    redirect_to_page,
    throttled,
)
from backoffice.guest.results import AlreadyDecided, Blocked, DecisionApplied
from backoffice.services.charge_approvals import (
    attempt_approved_charge,
    decide_charge_request,
    get_charge_approval_preview,
)

log = logging.getLogger("anchor.routers.manager")

router = APIRouter(prefix="/m", tags=["manager"])

PAGE = "charge-request"
SCOPE = "charge_approval"

# Blocked reasons the manager can fix by resubmitting the form
_FORM_REASONS = {
    "amount_confirmation_mismatch",
    "threshold_confirmation_required",
    "invalid_amount",
    "amount_over_limit",
}


def _checked(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "on", "yes")


@router.get("/{token}/charge-request")
def charge_request_page(
    token: str,
    request: Request,
    status: str | None = None,
    db: Session = Depends(get_db),
):
    try:
        if throttled(db, request, token, SCOPE, action=False):
            return rate_limited_page(PAGE)
        return page_response(PAGE, get_charge_approval_preview(db, token), status=status)
    except Exception:
        db.rollback()
        log.exception("charge approval page failed")
        return internal_error_page(PAGE)


@router.post("/{token}/charge-request/action")
def charge_request_action(
    token: str,
    request: Request,
    decision: str = Form(default=""),
    approved_amount: str | None = Form(default=None),
    confirm_amount: str | None = Form(default=None),
    threshold_confirmed: str | None = Form(default=None),
    db: Session = Depends(get_db),
):
    try:
        if throttled(db, request, token, SCOPE, action=True):
            return redirect_to_page("m", token, PAGE, "rate_limited")

        result = decide_charge_request(
            db,
            token,
            decision,
            approved_amount=approved_amount,
            confirm_amount=confirm_amount,
            threshold_confirmed=_checked(threshold_confirmed),
        )

        if isinstance(result, DecisionApplied):
            if result.data["decision"] == "waived":
                status = "waived"
            else:
                attempt = attempt_approved_charge(db, result)
                status = f"approved_{attempt.status}"
        elif isinstance(result, AlreadyDecided):
            status = "already_decided"
        elif isinstance(result, Blocked) and result.reason in _FORM_REASONS:
            status = result.reason
        else:
            status = "error"
    except Exception:
        db.rollback()
        log.exception("charge approval action failed")
        status = "error"

    return redirect_to_page("m", token, PAGE, status)
