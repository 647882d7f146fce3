from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from backoffice.core.clock import format_money, format_venue_datetime, venue_now
from backoffice.core.config import settings
from backoffice.core.db import get_db
from backoffice.services import notify
from backoffice.services.charge_approvals import (
    format_charge_type,
    list_undecided_charge_requests,
    list_unpaid_approved_charge_requests,
)
from backoffice.services.idempotency import (
    claim_idempotency_key,
    compute_request_hash,
    persist_idempotency_response,
    release_idempotency_claim,
)

log = logging.getLogger("anchor.cron")


def require_cron_secret(authorization: str | None = Header(default=None)):
    expected = settings.CRON_SECRET
    presented = (authorization or "").removeprefix("Bearer ").strip()
    if not expected or not hmac.compare_digest(presented.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


def _digest(db: Session) -> tuple[notify.ManagerMessage, int]:
    undecided = list_undecided_charge_requests(db)
    unpaid = list_unpaid_approved_charge_requests(db)

    lines = []
    if undecided:
        lines.append(f"Charge requests waiting for a decision: {len(undecided)}")
        for charge, booking in undecided:
            lines.append(
                f"- {format_charge_type(charge.type)} {format_money(charge.amount, charge.currency)}"
                f" · {booking.booking_reference} ({format_venue_datetime(booking.start_datetime)})"
            )
    if unpaid:
        if lines:
            lines.append("")
        lines.append(f"Approved charges that failed to collect: {len(unpaid)}")
        for charge in unpaid:
            lines.append(f"- #{charge.id} {format_money(charge.amount, charge.currency)}: {charge.charge_attempt_error or 'payment failed'}")
    return notify.digest_message(lines), len(undecided) + len(unpaid)


@router.get("/charge-approvals-digest")
def charge_approvals_digest(force: bool = False, db: Session = Depends(get_db)):
    local_now = venue_now()
    date_key = local_now.date().isoformat()

    if not force and local_now.hour != settings.CHARGE_DIGEST_HOUR:
        return {"success": True, "skipped": True, "reason": "outside_digest_window", "date": date_key}

    claim_key = f"cron:charge-approvals-digest:{date_key}"
    claim_hash = compute_request_hash({"date": date_key, "recipient": settings.MANAGER_CHAT_ID})
    claim = claim_idempotency_key(db, claim_key, claim_hash)
    if claim.state == "conflict":
        raise HTTPException(status_code=409, detail="Charge approvals digest idempotency conflict")
    if claim.state in ("in_progress", "replay"):
        return {"success": True, "sent": False, "reason": "already_processed_or_in_progress", "date": date_key}

    try:
        message, count = _digest(db)
        if count == 0:
            response = {"success": True, "sent": False, "reason": "nothing_pending", "date": date_key}
        elif notify.notify_manager(message):
            response = {"success": True, "sent": True, "date": date_key, "items": count}
        else:
            release_idempotency_claim(db, claim_key, claim_hash)
            log.error("charge approvals digest delivery failed date=%s items=%s", date_key, count)
            return JSONResponse(status_code=502, content={"success": False, "error": "Failed to send digest"})

        persist_idempotency_response(db, claim_key, claim_hash, response)
        return response
    except Exception:
        db.rollback()
        release_idempotency_claim(db, claim_key, claim_hash)
        log.exception("charge approvals digest failed date=%s", date_key)
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal Server Error"})
