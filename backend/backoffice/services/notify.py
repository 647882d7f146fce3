"""Manager messages, delivered through the bot-service ``POST /notify`` endpoint.

Two messages exist: the per-request charge approval (with a button opening the
``/m/{token}/charge-request`` page) and the daily digest of open requests.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass

from backoffice.core.config import settings

log = logging.getLogger("anchor.notify")

TIMEOUT_SECONDS = 5
APPROVAL_BUTTON_TEXT = "Open charge approval"


class NotifyError(Exception):
    """The bot-service did not take the message."""


@dataclass(frozen=True)
class ManagerMessage:
    text: str
    url: str | None = None
    button_text: str | None = None


def charge_approval_message(
    *,
    charge_label: str,
    amount_display: str,
    booking_reference: str,
    booking_start: str,
    party_size: int,
    guest_name: str,
    link_expires: str,
    approval_url: str,
) -> ManagerMessage:
    text = "\n".join(
        [
            f"Charge approval needed: {charge_label} {amount_display}",
            f"Booking: {booking_reference} ({booking_start})",
            f"Party size: {party_size}",
            f"Guest: {guest_name}",
            f"Link expires: {link_expires}",
        ]
    )
    return ManagerMessage(text, url=approval_url, button_text=APPROVAL_BUTTON_TEXT)


def digest_message(lines: list[str]) -> ManagerMessage:
    return ManagerMessage("\n".join(lines))


def _post(message: ManagerMessage) -> None:
    service_url = (settings.BOT_SERVICE_URL or "").strip()
    if not service_url:
        raise NotifyError("BOT_SERVICE_URL is not set")
    if not settings.MANAGER_CHAT_ID:
        raise NotifyError("MANAGER_CHAT_ID is not set")

    body = {"chat_id": settings.MANAGER_CHAT_ID, "text": message.text}
    if message.url:
        body["url"] = message.url
        body["button_text"] = message.button_text
    headers = {"Content-Type": "application/json"}
    if settings.BOT_SERVICE_SECRET:
        headers["X-Bot-Secret"] = settings.BOT_SERVICE_SECRET

    req = urllib.request.Request(
        service_url.rstrip("/") + "/notify",
        data=json.dumps(body, ensure_ascii=False).encode("utf-8"),
        method="POST",
        headers=headers,
    )
    try:
        with urllib.request.urlopen(req, timeout=TIMEOUT_SECONDS) as resp:
            answer = resp.read().decode("utf-8", errors="ignore")
    except urllib.error.HTTPError as e:
        raise NotifyError(f"bot-service answered {e.code}") from e
    except OSError as e:
        raise NotifyError(f"bot-service unreachable: {e}") from e

    # {"ok": false} means Telegram refused the message
    try:
        parsed = json.loads(answer) if answer else {}
    except ValueError:
        parsed = {}
    if isinstance(parsed, dict) and parsed.get("ok") is False:
        raise NotifyError(f"bot-service could not deliver: {answer[:300]}")


def notify_manager(message: ManagerMessage) -> bool:
    """Best effort: a failed delivery is logged and returned as False, never raised."""
    try:
        _post(message)
    except NotifyError as e:
        log.warning("manager notify failed: %s", e)
        return False
    return True
