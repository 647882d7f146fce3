import io
import json
import urllib.error
import urllib.request

import pytest

from backoffice.core.config import settings
from backoffice.services import notify


class _Response(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


@pytest.fixture()
def bot_service(monkeypatch):
    monkeypatch.setattr(settings, "BOT_SERVICE_URL", "http://bot.internal:8001/")
    monkeypatch.setattr(settings, "BOT_SERVICE_SECRET", "bot-secret")
    requests = []
    answers = []

    def _urlopen(req, timeout):
        requests.append(req)
        answer = answers.pop(0) if answers else b'{"ok": true}'
        if isinstance(answer, Exception):
            raise answer
        return _Response(answer)

    monkeypatch.setattr(urllib.request, "urlopen", _urlopen)
    return requests, answers


def _approval():
    return notify.charge_approval_message(
        charge_label="No-show",
        amount_display="£40.00",
        booking_reference="TB-0001",
        booking_start="Sat 02 May, 19:00",
        party_size=4,
        guest_name="Ada Lovelace",
        link_expires="Mon 04 May, 19:00",
        approval_url="https://venue.test/m/abc/charge-request",
    )


def test_approval_message_carries_link_button():
    message = _approval()
    assert message.text.splitlines()[0] == "Charge approval needed: No-show £40.00"
    assert "Party size: 4" in message.text
    assert message.url == "https://venue.test/m/abc/charge-request"
    assert message.button_text == "Open charge approval"


def test_posts_to_bot_service(bot_service):
    requests, _ = bot_service

    assert notify.notify_manager(_approval()) is True

    req = requests[0]
    assert req.full_url == "http://bot.internal:8001/notify"
    assert req.get_header("X-bot-secret") == "bot-secret"
    body = json.loads(req.data)
    assert body["chat_id"] == 1001
    assert body["url"] == "https://venue.test/m/abc/charge-request"
    assert body["button_text"] == "Open charge approval"


def test_digest_has_no_button(bot_service):
    requests, _ = bot_service
    assert notify.notify_manager(notify.digest_message(["Charge requests waiting for a decision: 1"])) is True
    body = json.loads(requests[0].data)
    assert "url" not in body
    assert body["text"] == "Charge requests waiting for a decision: 1"


@pytest.mark.parametrize(
    "answer",
    [
        b'{"ok": false}',
        urllib.error.URLError("connection refused"),
        urllib.error.HTTPError("http://bot.internal:8001/notify", 403, "Forbidden", {}, None),
    ],
)
def test_delivery_failures_return_false(bot_service, answer):
    _, answers = bot_service
    answers.append(answer)
    assert notify.notify_manager(_approval()) is False


def test_unconfigured_service_is_not_called(monkeypatch):
    monkeypatch.setattr(settings, "BOT_SERVICE_URL", "")
    monkeypatch.setattr(urllib.request, "urlopen", lambda *a, **kw: pytest.fail("should not be called"))
    assert notify.notify_manager(_approval()) is False
