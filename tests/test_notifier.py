from __future__ import annotations

import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from trendwarden.alerts.notifier import (
    EventKind,
    LogNotifier,
    NotificationEvent,
    TelegramNotifier,
    build_notifier,
    safe_notify,
)
from trendwarden.common.config.schema import NotifierConfig


def _event() -> NotificationEvent:
    return NotificationEvent(
        EventKind.TRADE_OPENED,
        "LONG BTC/USDT:USDT",
        {"price": 100.5, "quantity": 2.0},
        timestamp=datetime(2024, 1, 1, 8, 30, tzinfo=timezone.utc),
    )


def test_render_formats_fields_and_time():
    text = _event().render()
    lines = text.splitlines()
    assert lines[0] == "📈 LONG BTC/USDT:USDT"
    assert "price: 100.5" in lines
    assert "quantity: 2" in lines
    assert lines[-1] == "2024-01-01 08:30:00 UTC"


def test_build_notifier():
    assert isinstance(build_notifier(None), LogNotifier)
    assert isinstance(build_notifier(NotifierConfig()), LogNotifier)
    tg = build_notifier(NotifierConfig(kind="telegram", telegram_token="t", telegram_chat_id="42"))
    assert isinstance(tg, TelegramNotifier)


def test_telegram_requires_credentials():
    with pytest.raises(ValueError):
        NotifierConfig(kind="telegram")


def test_telegram_posts_message():
    session = MagicMock()
    notifier = TelegramNotifier("tok", "42", session=session)
    assert notifier.send(_event()).result(timeout=5) is True
    notifier.close()
    url = session.post.call_args.args[0]
    payload = session.post.call_args.kwargs["json"]
    assert url == "https://api.telegram.org/bottok/sendMessage"
    assert payload["chat_id"] == "42"
    assert payload["text"].startswith("📈 LONG")
    session.post.return_value.raise_for_status.assert_called_once()


def test_telegram_send_returns_before_delivery():
    release = threading.Event()
    delivered = []

    def _slow_post(url, json, timeout):
        release.wait(timeout=5)
        delivered.append(json["text"])
        return MagicMock()

    session = MagicMock()
    session.post.side_effect = _slow_post
    notifier = TelegramNotifier("tok", "42", session=session)

    notifier.send(_event())
    notifier.send(NotificationEvent(EventKind.KILL_SWITCH, "Kill switch activated"))
    assert delivered == []

    release.set()
    notifier.close()
    assert [text.splitlines()[0] for text in delivered] == ["📈 LONG BTC/USDT:USDT", "🚨 Kill switch activated"]


def test_telegram_delivery_errors_are_logged_not_raised():
    session = MagicMock()
    session.post.side_effect = requests.ConnectionError("offline")
    notifier = TelegramNotifier("tok", "42", session=session)
    assert notifier.send(_event()).result(timeout=5) is False
    notifier.close()


def test_safe_notify_swallows_send_errors():
    broken = MagicMock(spec=LogNotifier)
    broken.send.side_effect = RuntimeError("boom")
    safe_notify(broken, _event())
    safe_notify(None, _event())
    broken.send.assert_called_once()
