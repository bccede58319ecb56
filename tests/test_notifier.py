from __future__ import annotations

from unittest.mock import AsyncMock, Mock, patch

import pytest
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError

from models import Tracker, TrackerStatus
from services.notifier import ChangeNotifier, build_change_message, should_notify


def _tracker(**overrides) -> Tracker:
    fields = dict(id=7, name="Price <watch>", url="http://example.com/?a=1&b=2", selector=".price")
    fields.update(overrides)
    return Tracker(**fields)


@pytest.mark.parametrize(
    ("previous", "updated", "expected"),
    [
        (_tracker(), _tracker(last_value="10", status="stable"), False),
        (_tracker(last_value="10", status="stable"), _tracker(last_value="12", status="changed"), True),
        (_tracker(last_value="12", status="changed"), _tracker(last_value="12", status="changed"), False),
        (_tracker(status="no-match"), _tracker(last_value="sale", status="match"), True),
        (_tracker(status="match"), _tracker(last_value="sale!", status="match"), False),
        (_tracker(status="match"), _tracker(last_value="none", status="no-match"), True),
        (_tracker(status="new"), _tracker(last_value="none", status="no-match"), False),
    ],
)
def test_should_notify(previous, updated, expected):
    assert should_notify(previous, updated) is expected


def test_change_message_escapes_html():
    previous = _tracker(last_value="<10>", status="stable")
    updated = _tracker(last_value="12 & more", status="changed")

    text = build_change_message(previous, updated)

    assert "Значение изменилось" in text
    assert "<b>Price &lt;watch&gt;</b>" in text
    assert "Было: <code>&lt;10&gt;</code>" in text
    assert "Стало: <code>12 &amp; more</code>" in text
    assert 'href="http://example.com/?a=1&amp;b=2"' in text


def test_match_message_mentions_keyword():
    updated = _tracker(last_value="On sale", status="match", trigger_word="sale")

    text = build_change_message(_tracker(), updated)

    assert "Найдено ключевое слово" in text
    assert "Ключевое слово: <i>sale</i>" in text
    assert "Было:" not in text


@pytest.mark.asyncio
async def test_notifier_sends_to_every_chat():
    bot = AsyncMock()
    notifier = ChangeNotifier(bot, (1, 2))

    await notifier(_tracker(last_value="10", status="stable"), _tracker(last_value="12", status="changed"))

    assert bot.send_message.await_count == 2
    assert [call.kwargs["chat_id"] for call in bot.send_message.await_args_list] == [1, 2]
    assert bot.send_message.await_args_list[0].kwargs["parse_mode"] == "HTML"


@pytest.mark.asyncio
async def test_notifier_skips_quiet_updates():
    bot = AsyncMock()
    notifier = ChangeNotifier(bot, (1,))

    await notifier(_tracker(last_value="10", status="stable"), _tracker(last_value="10", status="stable"))

    bot.send_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_notifier_skips_forbidden_chat():
    bot = AsyncMock()
    bot.send_message.side_effect = [TelegramForbiddenError(method=Mock(), message="blocked"), None]
    notifier = ChangeNotifier(bot, (1, 2))

    await notifier(_tracker(last_value="1", status="stable"), _tracker(last_value="2", status="changed"))

    assert bot.send_message.await_count == 2


@pytest.mark.asyncio
async def test_notifier_falls_back_to_plain_text():
    bot = AsyncMock()
    bot.send_message.side_effect = [
        TelegramBadRequest(method=Mock(), message="Bad Request: can't parse entities"),
        None,
    ]
    notifier = ChangeNotifier(bot, (1,))

    await notifier(_tracker(last_value="1", status="stable"), _tracker(last_value="2", status="changed"))

    retry = bot.send_message.await_args_list[1].kwargs
    assert "parse_mode" not in retry
    assert "<b>" not in retry["text"]
    assert "Price <watch>" in retry["text"]


@pytest.mark.asyncio
async def test_notifier_alerts_when_delivery_fails():
    bot = AsyncMock()
    bot.send_message.side_effect = TelegramBadRequest(method=Mock(), message="Bad Request: message is too long")
    notifier = ChangeNotifier(bot, (1,), tag_user="@oncall")

    with patch("services.notifier.send_critical_alert", new=AsyncMock()) as alert:
        await notifier(_tracker(last_value="1", status="stable"), _tracker(last_value="2", status="changed"))

    alert.assert_awaited_once()
    assert "message is too long" in alert.await_args.args[2]
    assert alert.await_args.kwargs["tag_user"] == "@oncall"


@pytest.mark.asyncio
async def test_notifier_as_store_listener(repository):
    bot = AsyncMock()
    repository.subscribe(ChangeNotifier(bot, (1,)), checks_only=True)
    tracker = repository.add_tracker("http://example.com", ".price")

    repository.update_tracker(tracker.id, {"last_value": "1", "status": TrackerStatus.STABLE})
    repository.update_tracker(tracker.id, {"last_value": "2", "status": TrackerStatus.CHANGED})
    repository.edit_tracker(tracker.id, manual_value="3")
    for task in list(repository._pending):
        await task

    assert bot.send_message.await_count == 1
