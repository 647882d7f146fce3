from __future__ import annotations

from urllib.parse import quote, urlencode

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.guest.messages import blocked_message, page_message, status_banner
from backoffice.guest.results import Blocked, to_payload
from backoffice.guest.throttle import check_guest_token_throttle


def throttled(db: Session, request: Request, raw_token: str, scope: str, *, action: bool) -> bool:
    """Count the attempt; True when this client has run out of attempts for the scope."""
    if action:
        max_attempts, kind = settings.GUEST_TOKEN_ACTION_MAX_ATTEMPTS, "action"
    else:
        max_attempts, kind = settings.GUEST_TOKEN_VIEW_MAX_ATTEMPTS, "view"
    result = check_guest_token_throttle(
        db,
        request,
        raw_token=raw_token,
        scope=f"{scope}_{kind}",
        max_attempts=max_attempts,
    )
    return not result.allowed


def page_response(page: str, result, *, status: str | None = None, status_code: int = 200) -> JSONResponse:
    payload = to_payload(result)
    if isinstance(result, Blocked):
        payload["message"] = blocked_message(result.reason)
    else:
        payload["message"] = page_message(page, result.state)
    banner = status_banner(status)
    if banner:
        payload["banner"] = banner
        payload["status"] = status
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def rate_limited_page(page: str) -> JSONResponse:
    return page_response(page, Blocked("rate_limited"), status_code=429)


def internal_error_page(page: str) -> JSONResponse:
    return page_response(page, Blocked("internal_error"), status_code=500)


def redirect_to_page(prefix: str, raw_token: str, page: str, status: str) -> RedirectResponse:
    url = f"/{prefix}/{quote(raw_token, safe='')}/{page}?{urlencode({'status': status})}"
    return RedirectResponse(url=url, status_code=303)
