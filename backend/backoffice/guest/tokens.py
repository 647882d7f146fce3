from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from backoffice.core.clock import as_utc
from backoffice.models import GuestToken

RAW_TOKEN_BYTES = 32
_MAX_RAW_TOKEN_LENGTH = 256


@dataclass(frozen=True)
class IssuedToken:
    raw_token: str
    token_hash: str
    expires_at: datetime


def generate_raw_token() -> str:
    return secrets.token_urlsafe(RAW_TOKEN_BYTES)


def hash_guest_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def _is_plausible(raw_token) -> bool:
    return isinstance(raw_token, str) and 0 < len(raw_token) <= _MAX_RAW_TOKEN_LENGTH


def token_matches(raw_token, stored_hash) -> bool:
    """Constant-time check of a presented raw token against a stored hash. Never raises."""
    if not _is_plausible(raw_token) or not isinstance(stored_hash, str) or not stored_hash:
        return False
    return hmac.compare_digest(hash_guest_token(raw_token), stored_hash)


def token_hash_prefix(raw_token) -> str:
    """Safe identifier for logs."""
    if not _is_plausible(raw_token):
        return "invalid"
    return hash_guest_token(raw_token)[:12]


def create_guest_token(
    db: Session,
    *,
    customer_id: int,
    action_type: str,
    expires_at: datetime,
    table_booking_id: int | None = None,
    charge_request_id: int | None = None,
    waitlist_offer_id: int | None = None,
    event_booking_id: int | None = None,
) -> IssuedToken:
    """Persist the hash of a fresh token; the raw value only lives in the returned link."""
    raw = generate_raw_token()
    token_hash = hash_guest_token(raw)
    db.add(
        GuestToken(
            token_hash=token_hash,
            action_type=action_type,
            customer_id=customer_id,
            table_booking_id=table_booking_id,
            charge_request_id=charge_request_id,
            waitlist_offer_id=waitlist_offer_id,
            event_booking_id=event_booking_id,
            expires_at=expires_at,
        )
    )
    db.flush()
    return IssuedToken(raw_token=raw, token_hash=token_hash, expires_at=expires_at)


def find_guest_token(db: Session, raw_token, action_type: str, *, for_update: bool = False) -> GuestToken | None:
    if not _is_plausible(raw_token):
        return None

    q = select(GuestToken).where(
        GuestToken.token_hash == hash_guest_token(raw_token),
        GuestToken.action_type == action_type,
    )
    if for_update:
        q = q.with_for_update()
    return db.execute(q).scalar_one_or_none()


def token_block_reason(token: GuestToken | None, now: datetime) -> str | None:
    if token is None:
        return "invalid_token"
    if token.consumed_at is not None:
        return "token_used"
    if as_utc(token.expires_at) <= now:
        return "token_expired"
    return None


def consume_guest_token(db: Session, token_id: int, now: datetime) -> bool:
    """Guarded write: consumed_at NULL -> now. False if someone else consumed it first."""
    res = db.execute(
        update(GuestToken)
        .where(GuestToken.id == token_id, GuestToken.consumed_at.is_(None))
        .values(consumed_at=now)
    )
    return res.rowcount == 1


def consume_subject_tokens(db: Session, *, action_type: str, now: datetime, **subject) -> int:
    """Close every open token of one scope pointing at a subject (e.g. after a webhook confirmation)."""
    conditions = [GuestToken.action_type == action_type, GuestToken.consumed_at.is_(None)]
    for column, value in subject.items():
        conditions.append(getattr(GuestToken, column) == value)
    res = db.execute(update(GuestToken).where(*conditions).values(consumed_at=now))
    return res.rowcount
