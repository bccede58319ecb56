from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, Mock

import pytest

from models import TrackerStatus
from services.errors import ExtractionError, FetchError, TrackerRemovedError
from services.pipeline import CheckPipeline, CheckStage

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


def _pipeline(repository, body: str | None = None, error: Exception | None = None) -> CheckPipeline:
    fetcher = Mock()
    fetcher.fetch = AsyncMock(return_value=body, side_effect=error)
    return CheckPipeline(fetcher, repository, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_first_then_changed_value(repository):
    tracker = repository.add_tracker("http://example.com", ".price")
    pipeline = _pipeline(repository, '<div class="price">10</div>')

    first = await pipeline.run(tracker)

    assert first.ok
    assert first.value == "10"
    assert first.tracker.status is TrackerStatus.STABLE
    assert first.tracker.last_value == "10"
    assert first.tracker.last_checked == NOW

    pipeline.fetcher.fetch.return_value = '<div class="price">12</div>'
    second = await pipeline.run(first.tracker)

    assert second.tracker.status is TrackerStatus.CHANGED
    assert second.tracker.last_value == "12"
    assert repository.get_tracker(tracker.id).last_value == "12"


@pytest.mark.asyncio
async def test_unchanged_value_is_stable(repository):
    tracker = repository.add_tracker("http://example.com/api", "data.price")
    pipeline = _pipeline(repository, '{"data": {"price": 5}}')

    outcome = await pipeline.run(tracker)
    outcome = await pipeline.run(outcome.tracker)

    assert outcome.tracker.status is TrackerStatus.STABLE
    assert outcome.tracker.last_value == "5"


@pytest.mark.asyncio
async def test_trigger_word_classification(repository):
    tracker = repository.add_tracker("http://example.com", ".stock", trigger_word="in stock")
    pipeline = _pipeline(repository, '<p class="stock">Now IN STOCK</p>')

    outcome = await pipeline.run(tracker)

    assert outcome.tracker.status is TrackerStatus.MATCH


@pytest.mark.asyncio
async def test_request_body_is_forwarded(repository):
    tracker = repository.add_tracker("http://example.com/api", "ok", request_body='{"q": 1}')
    pipeline = _pipeline(repository, '{"ok": true}')

    await pipeline.run(tracker)

    pipeline.fetcher.fetch.assert_awaited_once_with("http://example.com/api", '{"q": 1}')


@pytest.mark.asyncio
async def test_fetch_error_leaves_tracker_untouched(repository):
    tracker = repository.add_tracker("http://example.com", ".price")
    repository.update_tracker(tracker.id, {"last_value": "10", "status": "stable"})
    tracker = repository.get_tracker(tracker.id)
    writes = []
    repository.subscribe(lambda previous, updated: writes.append(updated))
    pipeline = _pipeline(repository, error=FetchError("http://example.com", "timed out"))

    outcome = await pipeline.run(tracker)

    assert not outcome.ok
    assert outcome.stage is CheckStage.ERRORED
    assert outcome.failed_stage is CheckStage.FETCHING
    assert isinstance(outcome.error, FetchError)
    assert writes == []
    assert repository.get_tracker(tracker.id) == tracker


@pytest.mark.asyncio
async def test_extraction_error_leaves_tracker_untouched(repository):
    tracker = repository.add_tracker("http://example.com", ".price")
    writes = []
    repository.subscribe(lambda previous, updated: writes.append(updated))
    pipeline = _pipeline(repository, "<div>no price here</div>")

    outcome = await pipeline.run(tracker)

    assert outcome.failed_stage is CheckStage.EXTRACTING
    assert isinstance(outcome.error, ExtractionError)
    assert writes == []
    assert repository.get_tracker(tracker.id).status is TrackerStatus.NEW


@pytest.mark.asyncio
async def test_exactly_one_write_per_successful_run(repository):
    tracker = repository.add_tracker("http://example.com", ".price")
    writes = []
    repository.subscribe(lambda previous, updated: writes.append(updated))

    await _pipeline(repository, '<b class="price">1</b>').run(tracker)

    assert len(writes) == 1


@pytest.mark.asyncio
async def test_run_check_now_raises_on_failure(repository):
    tracker = repository.add_tracker("http://example.com", ".price")
    pipeline = _pipeline(repository, "<div></div>")

    with pytest.raises(ExtractionError):
        await pipeline.run_check_now(tracker)


@pytest.mark.asyncio
async def test_run_check_now_returns_updated_tracker(repository):
    tracker = repository.add_tracker("http://example.com", ".price")
    pipeline = _pipeline(repository, '<div class="price">7</div>')

    updated = await pipeline.run_check_now(tracker)

    assert updated.last_value == "7"
    assert updated.status is TrackerStatus.STABLE


@pytest.mark.asyncio
async def test_tracker_removed_during_fetch_is_reported(repository):
    tracker = repository.add_tracker("http://example.com", ".price")

    async def fetch_then_remove(url, request_body=None):
        if repository.list_trackers():
            repository.remove_tracker(tracker.id)
        return '<div class="price">10</div>'

    fetcher = Mock()
    fetcher.fetch = AsyncMock(side_effect=fetch_then_remove)
    pipeline = CheckPipeline(fetcher, repository, clock=lambda: NOW)

    outcome = await pipeline.run(tracker)

    assert not outcome.ok
    assert outcome.failed_stage is CheckStage.PERSISTING
    assert isinstance(outcome.error, TrackerRemovedError)
    assert repository.list_trackers() == []

    with pytest.raises(TrackerRemovedError):
        await pipeline.run_check_now(tracker)
