"""Claim / persist / release keys so a repeated job run or request does its side effect once."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.core.clock import as_utc, utcnow
from backoffice.models import IdempotencyKey

log = logging.getLogger("anchor.idempotency")

DEFAULT_TTL = timedelta(days=14)


@dataclass(frozen=True)
class Claim:
    state: str  # claimed | replay | in_progress | conflict
    response: dict | None = None


def compute_request_hash(payload: dict) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def claim_idempotency_key(
    db: Session,
    key: str,
    request_hash: str,
    *,
    ttl: timedelta = DEFAULT_TTL,
    now: datetime | None = None,
) -> Claim:
    now = now or utcnow()
    row = db.execute(select(IdempotencyKey).where(IdempotencyKey.key == key).with_for_update()).scalar_one_or_none()

    if row is not None and as_utc(row.expires_at) <= now:
        db.delete(row)
        db.flush()
        row = None

    if row is None:
        db.add(IdempotencyKey(key=key, request_hash=request_hash, state="in_progress", expires_at=now + ttl))
        try:
            db.commit()
        except IntegrityError:
            # another caller claimed it between our read and insert
            db.rollback()
            return Claim("in_progress")
        return Claim("claimed")

    db.rollback()
    if row.request_hash != request_hash:
        return Claim("conflict")
    if row.state == "completed":
        return Claim("replay", row.response)
    return Claim("in_progress")


def persist_idempotency_response(
    db: Session,
    key: str,
    request_hash: str,
    response: dict,
    *,
    ttl: timedelta = DEFAULT_TTL,
    now: datetime | None = None,
) -> None:
    now = now or utcnow()
    res = db.execute(
        update(IdempotencyKey)
        .where(IdempotencyKey.key == key, IdempotencyKey.request_hash == request_hash)
        .values(state="completed", response=response, expires_at=now + ttl)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if res.rowcount != 1:
        log.warning("idempotency key %s vanished before its response was stored", key)


def release_idempotency_claim(db: Session, key: str, request_hash: str) -> None:
    db.execute(
        delete(IdempotencyKey)
        .where(
            IdempotencyKey.key == key,
            IdempotencyKey.request_hash == request_hash,
            IdempotencyKey.state == "in_progress",
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
