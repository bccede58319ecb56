"""Telegram alerts for administrators: critical messages and forwarded ERROR logs."""
from __future__ import annotations

import asyncio
import html
import logging
import sys
import traceback
from datetime import UTC, datetime
from typing import Coroutine, Sequence

from aiogram import Bot


MAX_ALERT_LENGTH = 3500


def format_critical_alert(message: str, tag_user: str | None = None) -> str:
    """Render plain ``message`` as the HTML body of a critical alert.

    Only the tail of an over-long message is kept, since tracebacks end with
    the interesting part.
    """
    body = html.escape(message[-MAX_ALERT_LENGTH:])
    parts = ["🚨 <b>КРИТИЧЕСКИЙ АЛЕРТ</b>", body]
    if tag_user:
        parts.append(tag_user)
    return "\n\n".join(parts)


def _report_undelivered(chat_id: int, exc: BaseException) -> None:
    # stderr, not logging: a logged error would be forwarded back here
    sys.stderr.write(f"Alert to {chat_id} not delivered: {exc!r}\n")


async def send_critical_alert(
    bot: Bot,
    admin_chat_ids: Sequence[int],
    message: str,
    tag_user: str | None = None,
) -> None:
    if not admin_chat_ids:
        return

    text = format_critical_alert(message, tag_user)
    for chat_id in admin_chat_ids:
        try:
            await bot.send_message(chat_id, text, parse_mode="HTML")
        except Exception as exc:
            _report_undelivered(chat_id, exc)


class AdminAlertHandler(logging.Handler):
    """Forwards ERROR records to the admin chats.

    Records logged with ``extra={"tracker_id": ...}`` are titled after that
    tracker, everything else is reported as a monitoring failure.
    """

    def __init__(
        self,
        bot: Bot,
        admin_chat_ids: Sequence[int],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        super().__init__(level=logging.ERROR)
        self._bot = bot
        self._admin_chat_ids = tuple(admin_chat_ids)
        self._loop = loop
        self._pending: set[asyncio.Task] = set()
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        if not self._admin_chat_ids or record.levelno < logging.ERROR:
            return
        try:
            text = self.render(record)
        except Exception:
            self.handleError(record)
            return
        self._schedule(self._broadcast(text))

    def render(self, record: logging.LogRecord) -> str:
        tracker_id = getattr(record, "tracker_id", None)
        if tracker_id is not None:
            title = f"⚠️ Трекер #{tracker_id}: {record.levelname}"
        else:
            title = f"⚠️ {record.levelname} в мониторинге"
        when = datetime.fromtimestamp(record.created, UTC).strftime("%Y-%m-%d %H:%M:%S %Z")

        details = self.format(record)
        if record.exc_info:
            details += "\n\n" + "".join(traceback.format_exception(*record.exc_info))
        elif record.stack_info:
            details += "\n\n" + record.stack_info

        return (
            f"{title}\n"
            f"Время: {when}\n"
            f"Источник: {record.name} ({record.module}:{record.lineno})\n\n"
            f"{details[-MAX_ALERT_LENGTH:]}"
        )

    async def _broadcast(self, text: str) -> None:
        for chat_id in self._admin_chat_ids:
            try:
                await self._bot.send_message(chat_id, text)
            except Exception as exc:
                _report_undelivered(chat_id, exc)

    def _schedule(self, coroutine: Coroutine[object, object, None]) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        target = self._loop if self._loop is not None and not self._loop.is_closed() else running
        if target is None or not target.is_running():
            asyncio.run(coroutine)
        elif target is running:
            task = target.create_task(coroutine)
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        else:
            # logged from another thread
            asyncio.run_coroutine_threadsafe(coroutine, target)


__all__ = ["AdminAlertHandler", "MAX_ALERT_LENGTH", "format_critical_alert", "send_critical_alert"]
