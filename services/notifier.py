"""Telegram notifications for tracker status changes."""
from __future__ import annotations

import asyncio
import logging
import re
from html import escape, unescape
from typing import Sequence

from aiogram import Bot
from aiogram.exceptions import (
    TelegramBadRequest,
    TelegramForbiddenError,
    TelegramRetryAfter,
)

from models import Tracker, TrackerStatus
from services.alerts import send_critical_alert

logger = logging.getLogger(__name__)

MAX_DELIVERY_ATTEMPTS = 5

_STATUS_HEADLINES = {
    TrackerStatus.CHANGED: "🔔 <b>Значение изменилось</b>",
    TrackerStatus.MATCH: "🎯 <b>Найдено ключевое слово</b>",
    TrackerStatus.NO_MATCH: "💤 <b>Ключевое слово пропало</b>",
}


def should_notify(previous: Tracker, updated: Tracker) -> bool:
    """Return True when a store write is worth a message to the admins.

    A ``changed`` write notifies whenever the value moved. Keyword trackers
    notify on entering ``match`` and on falling back from ``match`` to
    ``no-match``; repeated matches stay quiet.
    """
    if updated.status is TrackerStatus.CHANGED:
        return updated.last_value != previous.last_value
    if updated.status is TrackerStatus.MATCH:
        return previous.status is not TrackerStatus.MATCH
    if updated.status is TrackerStatus.NO_MATCH:
        return previous.status is TrackerStatus.MATCH
    return False


def build_change_message(previous: Tracker, updated: Tracker) -> str:
    name = escape(updated.name)
    url = escape(updated.url, quote=True)
    lines = [
        _STATUS_HEADLINES.get(updated.status, "ℹ️ <b>Обновление трекера</b>"),
        f"<b>{name}</b>",
        "",
    ]

    if updated.status is TrackerStatus.CHANGED and previous.last_value is not None:
        lines.append(f"Было: <code>{escape(previous.last_value)}</code>")
    lines.append(f"Стало: <code>{escape(updated.last_value or '—')}</code>")

    if updated.trigger_word:
        lines.append(f"Ключевое слово: <i>{escape(updated.trigger_word)}</i>")

    lines.extend(["", f"🌐 <a href=\"{url}\">Открыть страницу</a>"])
    return "\n".join(lines)


class ChangeNotifier:
    """Store listener that messages admins when a tracker changes."""

    def __init__(
        self,
        bot: Bot,
        chat_ids: Sequence[int],
        tag_user: str | None = None,
    ) -> None:
        self.bot = bot
        self.chat_ids = tuple(chat_ids)
        self.tag_user = tag_user
        self._chat_locks: dict[int, asyncio.Lock] = {}

    async def __call__(self, previous: Tracker, updated: Tracker) -> None:
        if not should_notify(previous, updated):
            return

        text = build_change_message(previous, updated)
        for chat_id in self.chat_ids:
            lock = self._chat_locks.get(chat_id)
            if lock is None:
                lock = asyncio.Lock()
                self._chat_locks[chat_id] = lock
            async with lock:
                await self._deliver(chat_id, updated, text)

    async def _deliver(self, chat_id: int, tracker: Tracker, text: str) -> None:
        attempts = 0
        parse_mode: str | None = "HTML"
        fallback_applied = False
        while attempts < MAX_DELIVERY_ATTEMPTS:
            attempts += 1
            try:
                kwargs = {"parse_mode": parse_mode} if parse_mode else {}
                await self.bot.send_message(
                    chat_id=chat_id,
                    text=text,
                    disable_web_page_preview=True,
                    **kwargs,
                )
                logger.info("Change notification sent to %s for tracker %s", chat_id, tracker.id)
                return
            except TelegramRetryAfter as exc:
                await asyncio.sleep(exc.retry_after + 1)
            except TelegramForbiddenError:
                logger.warning("Skipping chat %s: bot blocked or chat inaccessible", chat_id)
                return
            except TelegramBadRequest as exc:
                message = exc.message.lower() if exc.message else ""
                if "chat not found" in message:
                    logger.warning("Skipping chat %s: chat not found", chat_id)
                    return
                if "can't parse entities" in message and not fallback_applied:
                    text = _strip_html(text)
                    parse_mode = None
                    fallback_applied = True
                    continue
                logger.warning("Bad request when sending to %s: %s", chat_id, exc)
                await self._alert_delivery_failure(chat_id, tracker, f"Telegram Bad Request: {exc}")
                return
            except Exception as exc:
                logger.exception("Error sending change notification to %s for tracker %s", chat_id, tracker.id)
                await self._alert_delivery_failure(chat_id, tracker, f"Неожиданная ошибка: {exc}")
                return
        logger.error("Failed to notify %s about tracker %s after retries", chat_id, tracker.id)
        await self._alert_delivery_failure(chat_id, tracker, "Исчерпаны все попытки отправки")

    async def _alert_delivery_failure(self, chat_id: int, tracker: Tracker, reason: str) -> None:
        error_msg = (
            f"⚠️ Не удалось отправить уведомление об изменении!\n\n"
            f"Чат: {chat_id}\n"
            f"Трекер: {tracker.name} (#{tracker.id})\n"
            f"URL: {tracker.url}\n"
            f"Причина: {reason}"
        )
        await send_critical_alert(self.bot, self.chat_ids, error_msg, tag_user=self.tag_user)


def _strip_html(value: str) -> str:
    without_tags = re.sub(r"<[^>]+>", "", value)
    return unescape(without_tags)


__all__ = ["ChangeNotifier", "build_change_message", "should_notify"]
