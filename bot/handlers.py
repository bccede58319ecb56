"""Telegram command handlers for the bot."""
from __future__ import annotations

import html
import logging
from datetime import UTC, datetime
from typing import Iterable

from aiogram import Router
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.types import Message

from bot.filters import IsAdmin
from config import settings
from models import Tracker, TrackerStatus
from services.errors import TrackerError
from services.scheduler import TrackerScheduler
from services.storage import AppStateRepository, TrackerRepository

logger = logging.getLogger(__name__)
router = Router()

MAX_MESSAGE_LENGTH = 3500

STATUS_ICONS = {
    TrackerStatus.NEW: "🆕",
    TrackerStatus.STABLE: "✅",
    TrackerStatus.CHANGED: "🔔",
    TrackerStatus.MATCH: "🎯",
    TrackerStatus.NO_MATCH: "💤",
}

STATUS_LABELS = {
    TrackerStatus.NEW: "новый",
    TrackerStatus.STABLE: "без изменений",
    TrackerStatus.CHANGED: "изменился",
    TrackerStatus.MATCH: "есть совпадение",
    TrackerStatus.NO_MATCH: "нет совпадения",
}

HELP_TEXT = (
    "📋 <b>Доступные команды:</b>\n"
    "/list - Список трекеров\n"
    "/add URL | селектор | название - Добавить трекер\n"
    "/check ID - Проверить сейчас\n"
    "/interval ID минуты - Интервал проверки\n"
    "/trigger ID [слово] - Ключевое слово (без слова - сбросить)\n"
    "/body ID [json] - POST-тело запроса (без тела - GET)\n"
    "/setvalue ID значение - Задать значение вручную\n"
    "/rename ID название - Переименовать\n"
    "/remove ID - Удалить трекер\n"
    "/monitoring on|off|status - Фоновый мониторинг\n"
    "/help - Помощь\n\n"
    "Селектор - CSS-селектор для HTML-страниц или путь через точку "
    "(<code>data.items.0.price</code>) для JSON API."
)


def _plural_category(value: int) -> str:
    val = abs(int(value))
    if val % 10 == 1 and val % 100 != 11:
        return "one"
    if 2 <= val % 10 <= 4 and not 12 <= val % 100 <= 14:
        return "few"
    return "many"


def _minute_form(value: int, case: str = "nominative") -> str:
    forms = {
        "nominative": {
            "one": "минута",
            "few": "минуты",
            "many": "минут",
        },
        "accusative": {
            "one": "минуту",
            "few": "минуты",
            "many": "минут",
        },
    }
    case_forms = forms.get(case, forms["nominative"])
    return case_forms[_plural_category(value)]


def _format_minutes(value: int, case: str = "nominative") -> str:
    return f"{value} {_minute_form(value, case)}"


def _format_interval_phrase(value: int) -> str:
    prefix = "каждую" if _plural_category(value) == "one" else "каждые"
    return f"{prefix} {_format_minutes(value, case='accusative')}"


def format_time_ago(moment: datetime | None, now: datetime | None = None) -> str:
    if moment is None:
        return "ещё не проверялся"
    current = now or datetime.now(UTC)
    seconds = int((current - moment).total_seconds())
    if seconds < 60:
        return "только что"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes} мин назад"
    hours = minutes // 60
    if hours < 48:
        return f"{hours} ч назад"
    return f"{hours // 24} дн назад"


def _extract_user_id(message: Message) -> int | None:
    return message.from_user.id if message.from_user else None


def _parse_id(payload: str) -> int:
    try:
        return int(payload.strip())
    except (TypeError, ValueError) as exc:
        raise ValueError("Укажите числовой ID") from exc


def _split_id(args: str | None, usage: str, require_rest: bool = False) -> tuple[int, str]:
    parts = (args or "").split(maxsplit=1)
    if not parts:
        raise ValueError(f"Использование: {usage}")
    rest = parts[1].strip() if len(parts) > 1 else ""
    if require_rest and not rest:
        raise ValueError(f"Использование: {usage}")
    return _parse_id(parts[0]), rest


def _parse_add_payload(payload: str | None) -> tuple[str, str, str | None]:
    if not payload:
        raise ValueError("Использование: /add URL | селектор | название")

    parts = [part.strip() for part in payload.split("|")]
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise ValueError("Укажите URL и селектор через «|»")

    name = parts[2] if len(parts) > 2 and parts[2] else None
    return parts[0], parts[1], name


def _describe_tracker(tracker: Tracker, now: datetime | None = None) -> str:
    icon = STATUS_ICONS.get(tracker.status, "•")
    value = html.escape(tracker.last_value) if tracker.last_value is not None else "—"
    lines = [
        f"{tracker.id}. {icon} <b>{html.escape(tracker.name)}</b> · {STATUS_LABELS[tracker.status]}",
        f"    Значение: <code>{value}</code>",
        f"    Проверка: {format_time_ago(tracker.last_checked, now)}, "
        f"{_format_interval_phrase(tracker.check_interval)}",
        f"    <code>{html.escape(tracker.selector)}</code> @ {html.escape(tracker.url)}",
    ]
    if tracker.trigger_word:
        lines.append(f"    Ключевое слово: <i>{html.escape(tracker.trigger_word)}</i>")
    if tracker.method == "POST":
        lines.append("    Метод: POST")
    return "\n".join(lines)


def _chunk_blocks(blocks: Iterable[str], limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    chunks: list[str] = []
    current = ""
    for block in blocks:
        candidate = f"{current}\n\n{block}" if current else block
        if current and len(candidate) > limit:
            chunks.append(current)
            current = block
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


async def _answer_error(message: Message, exc: Exception) -> None:
    await message.answer(
        f"❌ <b>Ошибка:</b> {html.escape(str(exc))}",
        parse_mode='HTML'
    )


@router.message(CommandStart())
async def cmd_start(message: Message) -> None:
    user_id = _extract_user_id(message)
    logger.info("User %s started the bot", user_id)

    is_admin = user_id in settings.ADMIN_CHAT_IDS if user_id else False

    if is_admin:
        await message.answer(
            "✅ <b>Бот активирован!</b>\n\n"
            "Бот следит за значениями на страницах и сообщает об изменениях.\n\n"
            f"{HELP_TEXT}",
            parse_mode='HTML'
        )
    else:
        await message.answer(
            "👋 Привет! Этот бот предназначен только для администраторов.",
            parse_mode='HTML'
        )


@router.message(Command("help"), IsAdmin())
async def cmd_help(message: Message) -> None:
    await message.answer(f"📖 <b>Помощь по боту</b>\n\n{HELP_TEXT}", parse_mode='HTML')


@router.message(Command("list"), IsAdmin())
async def cmd_list(message: Message, repository: TrackerRepository, tracker_scheduler: TrackerScheduler) -> None:
    trackers = repository.list_trackers()
    state = "🟢 включен" if tracker_scheduler.is_running else "⏸ на паузе"
    header = f"📊 <b>Трекеры</b> ({len(trackers)}), мониторинг {state}"

    if not trackers:
        await message.answer(
            f"{header}\n\n— Пока ничего нет. Добавьте трекер командой /add.",
            parse_mode='HTML'
        )
        return

    now = datetime.now(UTC)
    blocks = [header, *(_describe_tracker(tracker, now) for tracker in trackers)]
    for chunk in _chunk_blocks(blocks):
        await message.answer(chunk, parse_mode='HTML', disable_web_page_preview=True)


@router.message(Command("add"), IsAdmin())
async def cmd_add(message: Message, command: CommandObject, repository: TrackerRepository) -> None:
    try:
        url, selector, name = _parse_add_payload(command.args)
        tracker = repository.add_tracker(url, selector, name=name)
    except ValueError as exc:
        await _answer_error(message, exc)
        return

    logger.info("Admin %s added tracker %s", _extract_user_id(message), tracker.id)
    await message.answer(
        "➕ Трекер добавлен. Первая проверка пройдёт на ближайшем тике "
        f"или по команде /check {tracker.id}.\n\n{_describe_tracker(tracker)}",
        parse_mode='HTML',
        disable_web_page_preview=True,
    )


@router.message(Command("rename"), IsAdmin())
async def cmd_rename(message: Message, command: CommandObject, repository: TrackerRepository) -> None:
    try:
        tracker_id, name = _split_id(command.args, "/rename ID название", require_rest=True)
        tracker = repository.edit_tracker(tracker_id, name=name)
    except ValueError as exc:
        await _answer_error(message, exc)
        return
    await message.answer(f"Название обновлено: <b>{html.escape(tracker.name)}</b>", parse_mode='HTML')


@router.message(Command("interval"), IsAdmin())
async def cmd_interval(message: Message, command: CommandObject, repository: TrackerRepository) -> None:
    try:
        tracker_id, minutes = _split_id(command.args, "/interval ID минуты", require_rest=True)
        tracker = repository.edit_tracker(tracker_id, check_interval=minutes)
    except ValueError as exc:
        await _answer_error(message, exc)
        return
    await message.answer(
        f"⏱ <b>{html.escape(tracker.name)}</b> проверяется "
        f"{_format_interval_phrase(tracker.check_interval)}.",
        parse_mode='HTML'
    )


@router.message(Command("trigger"), IsAdmin())
async def cmd_trigger(message: Message, command: CommandObject, repository: TrackerRepository) -> None:
    try:
        tracker_id, word = _split_id(command.args, "/trigger ID [слово]")
        tracker = repository.edit_tracker(tracker_id, trigger_word=word or None)
    except ValueError as exc:
        await _answer_error(message, exc)
        return

    if tracker.trigger_word:
        text = (
            f"🎯 <b>{html.escape(tracker.name)}</b>: ищем "
            f"«{html.escape(tracker.trigger_word)}» в значении."
        )
    else:
        text = f"<b>{html.escape(tracker.name)}</b>: ключевое слово сброшено, сравниваем значения."
    await message.answer(text, parse_mode='HTML')


@router.message(Command("body"), IsAdmin())
async def cmd_body(message: Message, command: CommandObject, repository: TrackerRepository) -> None:
    try:
        tracker_id, body = _split_id(command.args, "/body ID [json]")
        tracker = repository.edit_tracker(tracker_id, request_body=body or None)
    except ValueError as exc:
        await _answer_error(message, exc)
        return
    await message.answer(
        f"<b>{html.escape(tracker.name)}</b>: запросы отправляются методом {tracker.method}.",
        parse_mode='HTML'
    )


@router.message(Command("setvalue"), IsAdmin())
async def cmd_setvalue(message: Message, command: CommandObject, repository: TrackerRepository) -> None:
    try:
        tracker_id, value = _split_id(command.args, "/setvalue ID значение", require_rest=True)
        tracker = repository.edit_tracker(tracker_id, manual_value=value)
    except ValueError as exc:
        await _answer_error(message, exc)
        return

    logger.info("Admin %s set value of tracker %s manually", _extract_user_id(message), tracker_id)
    await message.answer(
        f"✏️ Значение задано вручную.\n\n{_describe_tracker(tracker)}",
        parse_mode='HTML',
        disable_web_page_preview=True,
    )


@router.message(Command("check"), IsAdmin())
async def cmd_check(message: Message, command: CommandObject, tracker_scheduler: TrackerScheduler) -> None:
    try:
        tracker_id = _parse_id(command.args or "")
    except ValueError as exc:
        await _answer_error(message, exc)
        return

    try:
        tracker = await tracker_scheduler.run_check_now(tracker_id)
    except TrackerError as exc:
        await message.answer(
            f"⚠️ Проверка не удалась, сохранённое значение не изменено.\n"
            f"<code>{html.escape(str(exc))}</code>",
            parse_mode='HTML'
        )
        return
    except ValueError as exc:
        await _answer_error(message, exc)
        return

    await message.answer(
        f"🔄 Проверено.\n\n{_describe_tracker(tracker)}",
        parse_mode='HTML',
        disable_web_page_preview=True,
    )


@router.message(Command("remove"), IsAdmin())
async def cmd_remove(message: Message, command: CommandObject, repository: TrackerRepository) -> None:
    try:
        removed = repository.remove_tracker(_parse_id(command.args or ""))
    except ValueError as exc:
        await _answer_error(message, exc)
        return
    await message.answer(f"🗑 Удалён <b>{html.escape(removed.name)}</b>.", parse_mode='HTML')


@router.message(Command("monitoring"), IsAdmin())
async def cmd_monitoring(
    message: Message,
    command: CommandObject,
    tracker_scheduler: TrackerScheduler,
    app_state: AppStateRepository,
) -> None:
    action = (command.args or "status").strip().lower()

    if action in {"on", "start"}:
        app_state.set_monitoring_enabled(True)
        tracker_scheduler.start()
        await tracker_scheduler.tick()
    elif action in {"off", "stop"}:
        app_state.set_monitoring_enabled(False)
        tracker_scheduler.stop()
    elif action != "status":
        await _answer_error(message, ValueError("Использование: /monitoring on|off|status"))
        return

    if tracker_scheduler.is_running:
        text = "🟢 Мониторинг включен."
    else:
        text = "⏸ Мониторинг на паузе."
    in_flight = len(tracker_scheduler.in_flight)
    if in_flight:
        text += f"\nВыполняется проверок: {in_flight}"
    logger.info("Admin %s: monitoring %s", _extract_user_id(message), action)
    await message.answer(text, parse_mode='HTML')


__all__ = ["format_time_ago", "router"]
