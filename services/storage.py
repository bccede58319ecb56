from __future__ import annotations

import asyncio
import inspect
import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Union
from urllib.parse import urlparse

from config import settings
from models import Tracker, TrackerStatus
from services.errors import ConfigurationError

logger = logging.getLogger(__name__)

TrackerListener = Callable[[Tracker, Tracker], Union[None, Awaitable[None]]]

ENGINE_FIELDS = frozenset({"last_value", "last_checked", "status", "updated_at"})
EDITABLE_FIELDS = frozenset(
    {"name", "url", "selector", "request_body", "trigger_word", "check_interval", "manual_value"}
)

_COLUMNS = (
    "id, name, url, selector, request_body, trigger_word, check_interval, "
    "last_value, last_checked, status, created_at, updated_at"
)


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _row_to_tracker(row: sqlite3.Row | tuple) -> Tracker:
    return Tracker(
        id=row[0],
        name=row[1],
        url=row[2],
        selector=row[3],
        request_body=row[4],
        trigger_word=row[5],
        check_interval=row[6],
        last_value=row[7],
        last_checked=_from_iso(row[8]),
        status=TrackerStatus(row[9]),
        created_at=_from_iso(row[10]),
        updated_at=_from_iso(row[11]),
    )


def _build_name(url: str) -> str:
    parsed = urlparse(url)
    host = parsed.netloc or url
    if host.startswith("www."):
        host = host[4:]
    return host or "Tracker"


def _validate_url(url: str) -> str:
    normalized = (url or "").strip()
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ConfigurationError("URL must start with http:// or https:// and include a host")
    return normalized


def _validate_selector(selector: str) -> str:
    normalized = (selector or "").strip()
    if not normalized:
        raise ConfigurationError("Selector cannot be empty")
    return normalized


def _validate_interval(interval: Any) -> int:
    try:
        minutes = int(interval)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError("Check interval must be an integer") from exc
    if minutes < 1:
        raise ConfigurationError("Check interval must be at least 1 minute")
    return minutes


def _validate_body(body: str | None) -> str | None:
    if body is None or not body.strip():
        return None
    try:
        json.loads(body)
    except ValueError as exc:
        raise ConfigurationError(f"Request body must be valid JSON: {exc}") from exc
    return body.strip()


def _normalize_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class TrackerRepository:
    """SQLite-backed tracker store with change notifications."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or settings.DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._listeners: list[tuple[TrackerListener, bool]] = []
        self._pending: set[asyncio.Task] = set()
        self._initialize()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=5, check_same_thread=False)

    def _initialize(self) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS trackers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    url TEXT NOT NULL,
                    selector TEXT NOT NULL,
                    request_body TEXT,
                    trigger_word TEXT,
                    check_interval INTEGER NOT NULL DEFAULT 15,
                    last_value TEXT,
                    last_checked TEXT,
                    status TEXT NOT NULL DEFAULT 'new',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def subscribe(self, listener: TrackerListener, checks_only: bool = False) -> Callable[[], None]:
        """Register ``listener(previous, updated)``; returns an unsubscribe callable.

        With ``checks_only`` the listener hears check results and skips user edits.
        """
        entry = (listener, checks_only)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _notify(self, previous: Tracker, updated: Tracker, from_check: bool) -> None:
        for listener, checks_only in list(self._listeners):
            if checks_only and not from_check:
                continue
            try:
                result = listener(previous, updated)
                if inspect.iscoroutine(result):
                    try:
                        loop = asyncio.get_running_loop()
                    except RuntimeError:
                        result.close()
                        logger.warning("No running loop, async listener skipped for tracker %s", updated.id)
                        continue
                    task = loop.create_task(result)
                    self._pending.add(task)
                    task.add_done_callback(self._pending.discard)
            except Exception:
                logger.exception("Tracker listener failed for tracker %s", updated.id)

    def list_trackers(self) -> list[Tracker]:
        with self._connect() as connection:
            rows = connection.execute(
                f"SELECT {_COLUMNS} FROM trackers ORDER BY created_at ASC, id ASC"
            ).fetchall()
        return [_row_to_tracker(row) for row in rows]

    def get_tracker(self, tracker_id: int) -> Tracker:
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {_COLUMNS} FROM trackers WHERE id = ?",
                (tracker_id,),
            ).fetchone()
        if row is None:
            raise ValueError(f"Tracker {tracker_id} not found")
        return _row_to_tracker(row)

    def add_tracker(
        self,
        url: str,
        selector: str,
        name: str | None = None,
        request_body: str | None = None,
        trigger_word: str | None = None,
        check_interval: int | None = None,
    ) -> Tracker:
        normalized_url = _validate_url(url)
        normalized_selector = _validate_selector(selector)
        interval = _validate_interval(
            check_interval if check_interval is not None else settings.DEFAULT_CHECK_INTERVAL_MINUTES
        )
        body = _validate_body(request_body)
        final_name = name.strip() if name and name.strip() else _build_name(normalized_url)
        trigger = _normalize_optional(trigger_word)
        timestamp = datetime.now(UTC)

        with self._connect() as connection:
            cursor = connection.execute(
                """
                INSERT INTO trackers (
                    name, url, selector, request_body, trigger_word, check_interval,
                    status, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    final_name,
                    normalized_url,
                    normalized_selector,
                    body,
                    trigger,
                    interval,
                    TrackerStatus.NEW.value,
                    _to_iso(timestamp),
                    _to_iso(timestamp),
                ),
            )
            connection.commit()

        logger.info("Tracker %s added for %s", cursor.lastrowid, normalized_url)
        return Tracker(
            id=cursor.lastrowid,
            name=final_name,
            url=normalized_url,
            selector=normalized_selector,
            request_body=body,
            trigger_word=trigger,
            check_interval=interval,
            created_at=timestamp,
            updated_at=timestamp,
        )

    def update_tracker(self, tracker_id: int, fields: Mapping[str, Any]) -> Tracker:
        """Write back the observation fields produced by a check."""
        unknown = set(fields) - ENGINE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be written by the check engine: {sorted(unknown)}")

        values: dict[str, Any] = dict(fields)
        values.setdefault("updated_at", datetime.now(UTC))
        if "status" in values:
            values["status"] = TrackerStatus(values["status"]).value
        for key in ("last_checked", "updated_at"):
            if key in values and isinstance(values[key], datetime):
                values[key] = _to_iso(values[key])

        return self._write(tracker_id, values, from_check=True)

    def edit_tracker(self, tracker_id: int, **fields: Any) -> Tracker:
        """Apply a user edit.

        A non-empty ``manual_value`` overrides the last observed value and marks
        the tracker as changed.
        """
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown tracker fields: {sorted(unknown)}")

        values: dict[str, Any] = {}
        if "name" in fields:
            name = (fields["name"] or "").strip()
            if not name:
                raise ConfigurationError("Name cannot be empty")
            values["name"] = name
        if "url" in fields:
            values["url"] = _validate_url(fields["url"])
        if "selector" in fields:
            values["selector"] = _validate_selector(fields["selector"])
        if "request_body" in fields:
            values["request_body"] = _validate_body(fields["request_body"])
        if "trigger_word" in fields:
            values["trigger_word"] = _normalize_optional(fields["trigger_word"])
        if "check_interval" in fields:
            values["check_interval"] = _validate_interval(fields["check_interval"])

        now = datetime.now(UTC)
        manual_value = fields.get("manual_value")
        if manual_value is not None and str(manual_value).strip():
            values["last_value"] = str(manual_value).strip()
            values["last_checked"] = _to_iso(now)
            values["status"] = TrackerStatus.CHANGED.value

        values["updated_at"] = _to_iso(now)
        return self._write(tracker_id, values, from_check=False)

    def _write(self, tracker_id: int, values: Mapping[str, Any], from_check: bool) -> Tracker:
        assignments = ", ".join(f"{column} = ?" for column in values)
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {_COLUMNS} FROM trackers WHERE id = ?",
                (tracker_id,),
            ).fetchone()
            if row is None:
                raise ValueError(f"Tracker {tracker_id} not found")

            connection.execute(
                f"UPDATE trackers SET {assignments} WHERE id = ?",
                (*values.values(), tracker_id),
            )
            updated_row = connection.execute(
                f"SELECT {_COLUMNS} FROM trackers WHERE id = ?",
                (tracker_id,),
            ).fetchone()
            connection.commit()

        previous = _row_to_tracker(row)
        updated = _row_to_tracker(updated_row)
        self._notify(previous, updated, from_check)
        return updated

    def remove_tracker(self, tracker_id: int) -> Tracker:
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {_COLUMNS} FROM trackers WHERE id = ?",
                (tracker_id,),
            ).fetchone()
            if row is None:
                raise ValueError(f"Tracker {tracker_id} not found")

            connection.execute("DELETE FROM trackers WHERE id = ?", (tracker_id,))
            connection.commit()

        logger.info("Tracker %s removed", tracker_id)
        return _row_to_tracker(row)


class AppStateRepository:
    """Key/value application state that survives restarts."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or settings.DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=5, check_same_thread=False)

    def _initialize(self) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS app_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

    def _get_meta(self, key: str) -> str | None:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT value FROM app_meta WHERE key = ?",
                (key,),
            ).fetchone()
        return row[0] if row else None

    def _set_meta(self, key: str, value: str) -> None:
        with self._connect() as connection:
            connection.execute(
                "INSERT OR REPLACE INTO app_meta (key, value) VALUES (?, ?)",
                (key, value),
            )
            connection.commit()

    def get_monitoring_enabled(self) -> bool:
        value = self._get_meta("monitoring_enabled")
        if value is None:
            return settings.MONITORING_ENABLED
        return value == "1"

    def set_monitoring_enabled(self, enabled: bool) -> bool:
        self._set_meta("monitoring_enabled", "1" if enabled else "0")
        return enabled
