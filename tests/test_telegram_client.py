from unittest.mock import MagicMock

import pytest
import requests

from spotbot.core.exceptions import NotificationError
from spotbot.data.telegram_client import TelegramNotifier


def make_response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def notifier(session):
    return TelegramNotifier(token="TOKEN", chat_id="42", base_url="https://telegram.test", session=session)


def test_send_returns_message_id(notifier, session):
    session.post.return_value = make_response({"ok": True, "result": {"message_id": 7}})

    assert notifier.send("  <b>hello</b>  ") == 7

    url = session.post.call_args.args[0]
    payload = session.post.call_args.kwargs["json"]
    assert url == "https://telegram.test/botTOKEN/sendMessage"
    assert payload["chat_id"] == "42"
    assert payload["text"] == "<b>hello</b>"
    assert payload["parse_mode"] == "HTML"


def test_send_swallows_failures(notifier, session):
    session.post.side_effect = requests.ConnectionError("down")
    assert notifier.send("hello") is None


def test_ask_builds_inline_keyboard(notifier, session):
    session.post.return_value = make_response({"ok": True, "result": {"message_id": 9}})

    assert notifier.ask("Buy?", [("YES", "confirm_1"), ("NO", "reject_1")]) == 9

    keyboard = session.post.call_args.kwargs["json"]["reply_markup"]["inline_keyboard"]
    assert keyboard == [[{"text": "YES", "callback_data": "confirm_1"},
                         {"text": "NO", "callback_data": "reject_1"}]]


def test_ask_raises_when_rejected(notifier, session):
    session.post.return_value = make_response({"ok": False, "description": "chat not found"}, status_code=400)
    with pytest.raises(NotificationError):
        notifier.ask("Buy?", [("YES", "confirm_1")])


def test_is_operator(notifier):
    assert notifier.is_operator(42) is True
    assert notifier.is_operator("43") is False
