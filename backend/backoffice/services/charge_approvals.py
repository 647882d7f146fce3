"""Manager approval of no-show / walkout / reduction fees via a one-time link.

Flow: ``send_manager_charge_approval`` issues a token and messages the
manager; the manager page previews the request; the decision is applied with a
single guarded write; an approved decision then triggers one off-session card
charge whose outcome is recorded but never rolls the decision back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from backoffice.core.clock import MAX_MONEY_AMOUNT, as_utc, format_money, format_venue_datetime, to_money, utcnow
from backoffice.core.config import settings
from backoffice.guest.results import (
    AlreadyDecided,
    Blocked,
    DecisionApplied,
    DecisionResult,
    PreviewResult,
    Ready,
)
from backoffice.guest.tokens import (
    consume_guest_token,
    create_guest_token,
    find_guest_token,
    token_block_reason,
    token_hash_prefix,
)
from backoffice.models import (
    CardCapture,
    CardCaptureStatus,
    ChargeRequest,
    ChargeRequestType,
    ChargeStatus,
    Customer,
    GuestToken,
    GuestTokenAction,
    ManagerDecision,
    Payment,
    PaymentChargeType,
    PaymentStatus,
    TableBooking,
)
from backoffice.services import notify, payments

log = logging.getLogger("anchor.charge_approvals")

CHARGE_TYPE_LABELS = {
    ChargeRequestType.LATE_CANCEL.value: "Late cancellation",
    ChargeRequestType.NO_SHOW.value: "No-show",
    ChargeRequestType.REDUCTION_FEE.value: "Reduction fee",
    ChargeRequestType.WALKOUT.value: "Walkout / unpaid bill",
}

_DECISION_ALIASES = {
    "approved": ManagerDecision.APPROVED.value,
    "approve": ManagerDecision.APPROVED.value,
    "waived": ManagerDecision.WAIVED.value,
    "waive": ManagerDecision.WAIVED.value,
}


@dataclass(frozen=True)
class ChargeWarnings:
    warning_over_200: bool
    warning_over_50_per_head: bool
    requires_amount_reentry: bool

    @property
    def needs_extra_confirmation(self) -> bool:
        return self.warning_over_200 or self.warning_over_50_per_head


@dataclass(frozen=True)
class ChargeAttemptResult:
    status: str  # succeeded | pending | failed
    payment_intent_id: str | None
    amount: Decimal
    currency: str
    error_message: str | None = None


@dataclass(frozen=True)
class ApprovalLinkResult:
    sent: bool
    approval_url: str | None = None
    error: str | None = None


def format_charge_type(charge_type: str | None) -> str:
    return CHARGE_TYPE_LABELS.get(charge_type or "", "Charge request")


def charge_warnings(amount: Decimal, party_size: int, charge_type: str) -> ChargeWarnings:
    total_threshold = settings.CHARGE_WARNING_TOTAL_THRESHOLD
    per_head = settings.CHARGE_WARNING_PER_HEAD_THRESHOLD
    over_total = amount > total_threshold
    return ChargeWarnings(
        warning_over_200=over_total,
        warning_over_50_per_head=amount > per_head * max(1, party_size),
        requires_amount_reentry=charge_type == ChargeRequestType.WALKOUT.value or over_total,
    )


def compute_token_expiry(booking_start: datetime | None, now: datetime) -> datetime:
    """48h after the booking, but at least 1h and at most 30 days from now; 7 days if unknown."""
    cap = now + timedelta(days=30)
    if booking_start is None:
        return min(now + timedelta(days=7), cap)
    return max(now + timedelta(hours=1), min(as_utc(booking_start) + timedelta(hours=48), cap))


def _stored_payment_method(db: Session, table_booking_id: int) -> str | None:
    return db.execute(
        select(CardCapture.stripe_payment_method_id)
        .where(
            CardCapture.table_booking_id == table_booking_id,
            CardCapture.status == CardCaptureStatus.COMPLETED.value,
            CardCapture.stripe_payment_method_id.is_not(None),
        )
        .order_by(CardCapture.captured_at.desc(), CardCapture.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def _is_pending(charge: ChargeRequest) -> bool:
    return charge.manager_decision is None and charge.charge_status == ChargeStatus.PENDING.value


def _decided_payload(charge: ChargeRequest) -> dict:
    return {
        "charge_request_id": charge.id,
        "manager_decision": charge.manager_decision,
        "charge_status": charge.charge_status,
        "amount": str(charge.amount),
        "currency": charge.currency,
    }


def _resolve(
    db: Session, token: GuestToken | None, now: datetime, *, for_update: bool = False
) -> Blocked | AlreadyDecided | tuple[ChargeRequest, TableBooking]:
    if token is None:
        return Blocked("invalid_token")
    if token.charge_request_id is None:
        return Blocked("charge_request_not_found")

    q = (
        select(ChargeRequest, TableBooking)
        .join(TableBooking, TableBooking.id == ChargeRequest.table_booking_id)
        .where(ChargeRequest.id == token.charge_request_id)
    )
    if for_update:
        q = q.with_for_update(of=ChargeRequest)
    row = db.execute(q).one_or_none()

    reason = token_block_reason(token, now)
    if row is None:
        return Blocked(reason or "charge_request_not_found")

    charge, booking = row
    if booking.customer_id != token.customer_id:
        return Blocked("token_customer_mismatch")

    # a spent link on a decided request is the "it's done" page, not an error
    if reason == "token_used" and not _is_pending(charge):
        return AlreadyDecided(_decided_payload(charge))
    if reason:
        return Blocked(reason)
    if not _is_pending(charge):
        return AlreadyDecided(_decided_payload(charge))
    return charge, booking


def get_charge_approval_preview(db: Session, raw_token, *, now: datetime | None = None) -> PreviewResult:
    """Read-only; safe to call on every page refresh."""
    now = now or utcnow()
    token = find_guest_token(db, raw_token, GuestTokenAction.CHARGE_APPROVAL.value)
    resolved = _resolve(db, token, now)
    if not isinstance(resolved, tuple):
        return resolved

    charge, booking = resolved
    customer = db.get(Customer, booking.customer_id)
    payment_method_id = _stored_payment_method(db, booking.id)
    party_size = booking.effective_party_size
    warnings = charge_warnings(charge.amount, party_size, charge.type)

    return Ready(
        {
            "charge_request_id": charge.id,
            "table_booking_id": booking.id,
            "customer_id": booking.customer_id,
            "type": charge.type,
            "type_label": format_charge_type(charge.type),
            "amount": str(charge.amount),
            "currency": charge.currency,
            "amount_display": format_money(charge.amount, charge.currency),
            "booking_reference": booking.booking_reference,
            "start_datetime": as_utc(booking.start_datetime).isoformat(),
            "party_size": party_size,
            "table_name": booking.table_name,
            "customer_name": customer.display_name if customer else "Guest",
            "customer_mobile": customer.mobile_e164 if customer else None,
            "payment_method_available": bool(payment_method_id and customer and customer.stripe_customer_id),
            "requires_amount_reentry": warnings.requires_amount_reentry,
            "warning_over_200": warnings.warning_over_200,
            "warning_over_50_per_head": warnings.warning_over_50_per_head,
            "warning_needs_extra_confirmation": warnings.needs_extra_confirmation,
        }
    )


def _apply_charge_decision(
    db: Session, charge_request_id: int, *, decision: str, amount: Decimal, now: datetime
) -> bool:
    """Guarded write for a manager decision.

    Pre: the request is undecided (manager_decision NULL, charge_status pending).
    Post: exactly one caller sees True; approval stores the final amount and keeps
    charge_status pending for the charge attempt, waiver closes it as waived.
    """
    values: dict = {"manager_decision": decision, "decided_at": now, "updated_at": now}
    if decision == ManagerDecision.APPROVED.value:
        values["amount"] = amount
    else:
        values["charge_status"] = ChargeStatus.WAIVED.value

    res = db.execute(
        update(ChargeRequest)
        .where(
            ChargeRequest.id == charge_request_id,
            ChargeRequest.manager_decision.is_(None),
            ChargeRequest.charge_status == ChargeStatus.PENDING.value,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def decide_charge_request(
    db: Session,
    raw_token,
    decision: str,
    *,
    approved_amount=None,
    confirm_amount=None,
    threshold_confirmed: bool = False,
    now: datetime | None = None,
) -> DecisionResult:
    now = now or utcnow()
    normalized = _DECISION_ALIASES.get((decision or "").strip().lower())
    if normalized is None:
        return Blocked("invalid_decision")

    token = find_guest_token(db, raw_token, GuestTokenAction.CHARGE_APPROVAL.value, for_update=True)
    resolved = _resolve(db, token, now, for_update=True)
    if not isinstance(resolved, tuple):
        db.rollback()
        return resolved

    charge, booking = resolved
    amount = charge.amount

    if normalized == ManagerDecision.APPROVED.value:
        if approved_amount not in (None, ""):
            amount = to_money(approved_amount, fallback=None)
        if amount is None or amount <= 0:
            db.rollback()
            return Blocked("invalid_amount")
        if amount > min(settings.CHARGE_MAX_AMOUNT, MAX_MONEY_AMOUNT):
            db.rollback()
            return Blocked("amount_over_limit")

        warnings = charge_warnings(max(amount, charge.amount), booking.effective_party_size, charge.type)
        if warnings.requires_amount_reentry and to_money(confirm_amount, fallback=None) != amount:
            db.rollback()
            return Blocked("amount_confirmation_mismatch")
        if warnings.needs_extra_confirmation and not threshold_confirmed:
            db.rollback()
            return Blocked("threshold_confirmation_required")

    if not _apply_charge_decision(db, charge.id, decision=normalized, amount=amount, now=now):
        db.rollback()
        current = db.get(ChargeRequest, charge.id, populate_existing=True)
        log.info("charge request %s already decided (race)", charge.id)
        return AlreadyDecided(_decided_payload(current) if current else {"charge_request_id": charge.id})

    consume_guest_token(db, token.id, now)
    customer = db.get(Customer, booking.customer_id)
    payment_method_id = _stored_payment_method(db, booking.id)
    db.commit()

    log.info(
        "charge request %s %s amount=%s token=%s",
        charge.id,
        normalized,
        amount,
        token_hash_prefix(raw_token),
    )
    return DecisionApplied(
        {
            "decision": normalized,
            "charge_request_id": charge.id,
            "table_booking_id": booking.id,
            "customer_id": booking.customer_id,
            "type": charge.type,
            "amount": amount,
            "currency": (charge.currency or settings.DEFAULT_CURRENCY).upper(),
            "manager_decision": normalized,
            "charge_status": (
                ChargeStatus.WAIVED.value if normalized == ManagerDecision.WAIVED.value else ChargeStatus.PENDING.value
            ),
            "stripe_customer_id": customer.stripe_customer_id if customer else None,
            "stripe_payment_method_id": payment_method_id,
        }
    )


def _map_intent_status(status: str | None) -> str:
    if status == "succeeded":
        return ChargeStatus.SUCCEEDED.value
    if status in ("processing", "requires_capture"):
        return ChargeStatus.PENDING.value
    return ChargeStatus.FAILED.value


def _record_attempt(
    db: Session,
    data: dict,
    *,
    status: str,
    payment_intent_id: str | None,
    error_message: str | None,
) -> None:
    now = utcnow()
    db.execute(
        update(ChargeRequest)
        .where(ChargeRequest.id == data["charge_request_id"])
        .values(
            charge_status=status,
            stripe_payment_intent_id=payment_intent_id,
            charge_attempt_error=(error_message or None) and error_message[:500],
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    db.add(
        Payment(
            table_booking_id=data["table_booking_id"],
            charge_request_id=data["charge_request_id"],
            charge_type=(
                PaymentChargeType.WALKOUT.value
                if data.get("type") == ChargeRequestType.WALKOUT.value
                else PaymentChargeType.APPROVED_FEE.value
            ),
            stripe_payment_intent_id=payment_intent_id,
            amount=data["amount"],
            currency=data["currency"],
            status=status,
            reason=(error_message or None) and error_message[:500],
        )
    )
    db.commit()


def attempt_approved_charge(db: Session, decision: DecisionApplied) -> ChargeAttemptResult:
    """Charge the stored card for an applied approval and record the outcome.

    Never undoes the decision and never retries; a failure leaves the request
    approved-but-unpaid for manual follow-up.
    """
    data = decision.data
    amount = data.get("amount") or Decimal("0")
    currency = data.get("currency") or settings.DEFAULT_CURRENCY

    if data.get("decision") != ManagerDecision.APPROVED.value:
        raise ValueError("attempt_approved_charge needs an applied approval")

    def _fail(message: str) -> ChargeAttemptResult:
        _record_attempt(db, data, status=ChargeStatus.FAILED.value, payment_intent_id=None, error_message=message)
        log.warning("charge request %s not charged: %s", data["charge_request_id"], message)
        return ChargeAttemptResult(ChargeStatus.FAILED.value, None, amount, currency, message)

    if amount <= 0:
        return _fail("Charge amount must be positive")
    if not payments.is_configured():
        return _fail("Stripe is not configured")
    if not data.get("stripe_customer_id") or not data.get("stripe_payment_method_id"):
        return _fail("No card on file for this booking")

    try:
        intent = payments.create_off_session_charge(
            idempotency_key=f"charge_request_{data['charge_request_id']}",
            amount=amount,
            currency=currency,
            customer_id=data["stripe_customer_id"],
            payment_method_id=data["stripe_payment_method_id"],
            metadata={
                "payment_kind": "approved_charge",
                "charge_request_id": str(data["charge_request_id"]),
                "table_booking_id": str(data["table_booking_id"]),
                "charge_type": str(data.get("type") or ""),
            },
        )
    except payments.PaymentError as e:
        log.exception("approved charge %s failed", data["charge_request_id"])
        return _fail(str(e))

    status = _map_intent_status(intent.status)
    try:
        _record_attempt(
            db,
            data,
            status=status,
            payment_intent_id=intent.id,
            error_message=intent.error_message,
        )
    except Exception:
        # Stripe holds an intent we could not record; the webhook settles it later
        db.rollback()
        log.exception("failed to persist charge attempt for request %s intent=%s", data["charge_request_id"], intent.id)
        if status != ChargeStatus.FAILED.value:
            status = ChargeStatus.PENDING.value

    log.info("charge request %s attempt status=%s intent=%s", data["charge_request_id"], status, intent.id)
    return ChargeAttemptResult(status, intent.id, amount, currency, intent.error_message)


def send_manager_charge_approval(
    db: Session, charge_request_id: int, *, base_url: str | None = None
) -> ApprovalLinkResult:
    """Issue a manager approval link for an undecided charge request and deliver it."""
    charge = db.get(ChargeRequest, charge_request_id)
    if charge is None:
        return ApprovalLinkResult(sent=False, error="Charge request not found")
    if not _is_pending(charge):
        return ApprovalLinkResult(sent=False, error="Charge request already decided")

    booking = db.get(TableBooking, charge.table_booking_id)
    if booking is None:
        return ApprovalLinkResult(sent=False, error="Table booking not found for charge request")
    customer = db.get(Customer, booking.customer_id)

    now = utcnow()
    issued = create_guest_token(
        db,
        customer_id=booking.customer_id,
        action_type=GuestTokenAction.CHARGE_APPROVAL.value,
        charge_request_id=charge.id,
        table_booking_id=booking.id,
        expires_at=compute_token_expiry(booking.start_datetime, now),
    )
    db.commit()

    approval_url = f"{(base_url or settings.app_base_url()).rstrip('/')}/m/{issued.raw_token}/charge-request"
    message = notify.charge_approval_message(
        charge_label=format_charge_type(charge.type),
        amount_display=format_money(charge.amount, charge.currency),
        booking_reference=booking.booking_reference,
        booking_start=format_venue_datetime(booking.start_datetime),
        party_size=booking.effective_party_size,
        guest_name=customer.display_name if customer else "Guest",
        link_expires=format_venue_datetime(issued.expires_at),
        approval_url=approval_url,
    )
    if not notify.notify_manager(message):
        return ApprovalLinkResult(sent=False, approval_url=approval_url, error="Failed to deliver approval link")
    return ApprovalLinkResult(sent=True, approval_url=approval_url)


def list_undecided_charge_requests(db: Session) -> list[tuple[ChargeRequest, TableBooking]]:
    rows = db.execute(
        select(ChargeRequest, TableBooking)
        .join(TableBooking, TableBooking.id == ChargeRequest.table_booking_id)
        .where(ChargeRequest.manager_decision.is_(None), ChargeRequest.charge_status == ChargeStatus.PENDING.value)
        .order_by(ChargeRequest.created_at.asc())
    ).all()
    return [(r[0], r[1]) for r in rows]


def list_unpaid_approved_charge_requests(db: Session) -> list[ChargeRequest]:
    return list(
        db.scalars(
            select(ChargeRequest)
            .where(
                ChargeRequest.manager_decision == ManagerDecision.APPROVED.value,
                ChargeRequest.charge_status == ChargeStatus.FAILED.value,
            )
            .order_by(ChargeRequest.decided_at.asc())
        ).all()
    )


def settle_approved_charge(
    db: Session,
    *,
    charge_request_id: int,
    payment_intent_id: str,
    succeeded: bool,
    error_message: str | None = None,
) -> bool:
    """Apply a late PaymentIntent outcome from the webhook. A recorded success is never downgraded."""
    status = ChargeStatus.SUCCEEDED.value if succeeded else ChargeStatus.FAILED.value
    now = utcnow()
    res = db.execute(
        update(ChargeRequest)
        .where(
            ChargeRequest.id == charge_request_id,
            ChargeRequest.manager_decision == ManagerDecision.APPROVED.value,
            ChargeRequest.charge_status != ChargeStatus.SUCCEEDED.value,
        )
        .values(
            charge_status=status,
            stripe_payment_intent_id=payment_intent_id,
            charge_attempt_error=(error_message or None) and error_message[:500],
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    db.execute(
        update(Payment)
        .where(Payment.stripe_payment_intent_id == payment_intent_id, Payment.status != PaymentStatus.SUCCEEDED.value)
        .values(status=status, reason=(error_message or None) and error_message[:500], updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if res.rowcount:
        log.info("charge request %s settled by webhook status=%s intent=%s", charge_request_id, status, payment_intent_id)
    return res.rowcount == 1
