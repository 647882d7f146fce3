"""Fixed-window throttle for guest/manager token links.

Two buckets are counted per check:

- ``(scope, token hash, fingerprint)``: denies after ``max_attempts``; when it
  trips, the fingerprint is blocked for the whole scope until the window ends,
  so switching to another (valid or invalid) token does not help;
- ``(scope, fingerprint)``: denies after ``max_attempts * multiplier`` to slow
  enumeration of many different tokens.

The fingerprint is the client address as recorded by our own proxies, never
the part of X-Forwarded-For the client wrote. Buckets whose window and block
have both passed are deleted on each check.

Counters live in the database so every serving instance sees the same numbers.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from fastapi import Request
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.core.clock import as_utc, utcnow
from backoffice.core.config import settings
from backoffice.guest.tokens import token_hash_prefix
from backoffice.models import GuestTokenThrottle

log = logging.getLogger("anchor.guest.throttle")


@dataclass(frozen=True)
class ThrottleResult:
    allowed: bool


def client_ip(request: Request) -> str:
    hops = [h.strip() for h in (request.headers.get("x-forwarded-for") or "").split(",") if h.strip()]
    trusted = settings.GUEST_TOKEN_TRUSTED_PROXY_HOPS
    if trusted > 0 and len(hops) >= trusted:
        return hops[-trusted]
    return request.client.host if request.client else ""


def client_fingerprint(request: Request) -> str:
    return hashlib.sha256(client_ip(request).encode("utf-8")).hexdigest()[:24]


def _prune(db: Session, *, now: datetime, window: timedelta) -> int:
    res = db.execute(
        delete(GuestTokenThrottle)
        .where(
            GuestTokenThrottle.window_started_at <= now - window,
            or_(GuestTokenThrottle.blocked_until.is_(None), GuestTokenThrottle.blocked_until <= now),
        )
        .execution_options(synchronize_session="fetch")
    )
    return res.rowcount


def _bump(db: Session, key: str, *, now: datetime, window: timedelta) -> GuestTokenThrottle:
    row = db.execute(
        select(GuestTokenThrottle).where(GuestTokenThrottle.bucket_key == key).with_for_update()
    ).scalar_one_or_none()

    if row is None:
        row = GuestTokenThrottle(bucket_key=key, window_started_at=now, attempts=0)
        db.add(row)
        db.flush()
    elif as_utc(row.window_started_at) + window <= now:
        row.window_started_at = now
        row.attempts = 0

    row.attempts += 1
    return row


def _check(
    db: Session,
    *,
    fingerprint: str,
    raw_token,
    scope: str,
    max_attempts: int,
    now: datetime,
) -> ThrottleResult:
    window = timedelta(seconds=settings.GUEST_TOKEN_THROTTLE_WINDOW_SECONDS)
    token_key = f"guest:{scope}:t:{token_hash_prefix(raw_token)}:{fingerprint}"
    fingerprint_key = f"guest:{scope}:f:{fingerprint}"

    _prune(db, now=now, window=window)
    token_bucket = _bump(db, token_key, now=now, window=window)
    fingerprint_bucket = _bump(db, fingerprint_key, now=now, window=window)

    fingerprint_limit = max_attempts * max(1, settings.GUEST_TOKEN_THROTTLE_FINGERPRINT_MULTIPLIER)
    blocked_until = as_utc(fingerprint_bucket.blocked_until)

    allowed = True
    if blocked_until is not None and blocked_until > now:
        allowed = False

    if token_bucket.attempts > max_attempts:
        allowed = False
        window_end = as_utc(token_bucket.window_started_at) + window
        if blocked_until is None or blocked_until < window_end:
            fingerprint_bucket.blocked_until = window_end

    if fingerprint_bucket.attempts > fingerprint_limit:
        allowed = False

    return ThrottleResult(allowed=allowed)


def check_guest_token_throttle(
    db: Session,
    request: Request,
    *,
    raw_token,
    scope: str,
    max_attempts: int,
    now: datetime | None = None,
) -> ThrottleResult:
    """Count one attempt and say whether it may proceed. Commits its own counters."""
    now = now or utcnow()
    fingerprint = client_fingerprint(request)

    for attempt in range(2):
        try:
            result = _check(
                db,
                fingerprint=fingerprint,
                raw_token=raw_token,
                scope=scope,
                max_attempts=max_attempts,
                now=now,
            )
            db.commit()
        except IntegrityError:
            # two first-attempts raced on the insert; the second pass finds the row
            db.rollback()
            if attempt:
                raise
            continue

        if not result.allowed:
            log.warning("guest token throttled scope=%s token=%s", scope, token_hash_prefix(raw_token))
        return result

    return ThrottleResult(allowed=False)
