"""Pytest configuration and fixtures."""
from __future__ import annotations

from pathlib import Path

import pytest

from config import settings
from services.storage import TrackerRepository


@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch) -> None:
    """Set up test environment variables"""
    monkeypatch.setenv('BOT_TOKEN', 'test_token_123456')
    monkeypatch.setenv('ADMIN_CHAT_IDS', '123456789,987654321')
    monkeypatch.setenv('TICK_SECONDS', '60')
    monkeypatch.setenv('REQUEST_TIMEOUT', '12')
    monkeypatch.setenv('STAGGER_SECONDS', '2')
    monkeypatch.delenv('PROXY_URL', raising=False)
    monkeypatch.delenv('MONITORING_ENABLED', raising=False)
    monkeypatch.delenv('DEFAULT_CHECK_INTERVAL_MINUTES', raising=False)
    settings.reload()


@pytest.fixture
def temp_db(tmp_path, monkeypatch) -> Path:
    """Point DB_PATH at a throwaway SQLite file"""
    db_path = tmp_path / "trackers.db"
    monkeypatch.setenv('DB_PATH', str(db_path))
    settings.reload()
    return db_path


@pytest.fixture
def repository(temp_db) -> TrackerRepository:
    return TrackerRepository(db_path=temp_db)


@pytest.fixture
def sample_html() -> str:
    """Product page with a price block"""
    return """
    <html>
        <body>
            <div class="card">
                <h1 class="title">Test Item</h1>
                <div class="price">9.99</div>
                <span class="stock">
                    In   stock
                </span>
            </div>
        </body>
    </html>
    """


@pytest.fixture
def sample_json() -> str:
    """API payload with nested objects and arrays"""
    return """
    {
        "dealing": {"status": "open", "count": 3, "active": true, "closed_at": null},
        "items": [{"price": 10.5}, {"price": 12}],
        "meta": {"tags": ["a", "b"]}
    }
    """
