from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from zoneinfo import ZoneInfo

from backoffice.core.config import settings

# widest value a Numeric(10, 2) column holds
MAX_MONEY_AMOUNT = Decimal("99999999.99")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Some drivers (sqlite) hand back naive datetimes for timestamptz columns."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def venue_now(now: datetime | None = None) -> datetime:
    return (now or utcnow()).astimezone(ZoneInfo(settings.VENUE_TIMEZONE))


def format_venue_datetime(value: datetime | None) -> str:
    if value is None:
        return "Unknown time"
    local = as_utc(value).astimezone(ZoneInfo(settings.VENUE_TIMEZONE))
    return local.strftime("%a %d %b, %H:%M")


def to_money(value, fallback: Decimal | None = Decimal("0.00")) -> Decimal | None:
    """Parse user/db input into a 2dp Decimal; returns fallback when unparseable."""
    if value is None or value == "":
        return fallback
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            return fallback
        # quantize raises for values wider than the decimal context
        return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return fallback


def format_money(amount: Decimal, currency: str = "GBP") -> str:
    symbol = {"GBP": "£", "EUR": "€", "USD": "$"}.get((currency or "").upper())
    if symbol:
        return f"{symbol}{amount:,.2f}"
    return f"{amount:,.2f} {(currency or '').upper()}"
