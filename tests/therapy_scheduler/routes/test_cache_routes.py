from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from therapy_scheduler.models.cache_cleanup_log import CacheCleanupLog
from therapy_scheduler.routes.cache_routes import (
    CacheLookupRequest,
    CacheStoreRequest,
    cache_statistics,
    cleanup_cache,
    lookup_cached_response,
    store_cached_response,
)

NOW = datetime(2026, 1, 5, 9, 0)


@pytest.fixture(autouse=True)
def database_ready(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('therapy_scheduler.routes.cache_routes.ensure_database_ready', lambda: None)


def test_lookup_request_strips_query_text() -> None:
    request = CacheLookupRequest(query_text='  When is Dana free?  ')

    assert request.query_text == 'When is Dana free?'


def test_lookup_request_rejects_blank_query_text() -> None:
    with pytest.raises(ValidationError):
        CacheLookupRequest(query_text='   ')


def test_store_request_rejects_oversized_query_text() -> None:
    with pytest.raises(ValidationError):
        CacheStoreRequest(query_text='x' * 4001, response_text='answer')


def test_lookup_misses_then_hits_after_store(db) -> None:
    clock = lambda: NOW  # noqa: E731

    miss = lookup_cached_response(CacheLookupRequest(query_text='When is Dana FREE?'), db=db, clock=clock)
    stored = store_cached_response(
        CacheStoreRequest(query_text='when is   dana free?', response_text='Monday 10:00', metadata={'source': 'slots'}),
        db=db,
        clock=clock,
    )
    hit = lookup_cached_response(CacheLookupRequest(query_text='When is Dana FREE?'), db=db, clock=clock)

    assert miss.hit is False
    assert stored.stored is True
    assert stored.cache_key == miss.cache_key
    assert hit.hit is True
    assert hit.response_text == 'Monday 10:00'
    assert hit.metadata == {'source': 'slots'}
    assert hit.hit_count == 1


def test_store_rejects_past_expiry(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        store_cached_response(
            CacheStoreRequest(query_text='question', response_text='answer', expires_at=NOW - timedelta(hours=1)),
            db=db,
            clock=lambda: NOW,
        )

    assert exception_info.value.status_code == 400


def test_cleanup_and_statistics(db) -> None:
    store_cached_response(
        CacheStoreRequest(query_text='short lived', response_text='answer', expires_at=NOW + timedelta(minutes=1)),
        db=db,
        clock=lambda: NOW,
    )
    later = lambda: NOW + timedelta(hours=1)  # noqa: E731

    before = cache_statistics(db=db, clock=later)
    cleanup = cleanup_cache(db=db, clock=later)
    after = cache_statistics(db=db, clock=later)

    assert (before.total_entries, before.expired_entries) == (1, 1)
    assert cleanup.expired_removed == 1
    assert cleanup.total_removed == 1
    assert after.total_entries == 0


def test_store_accepts_utc_expiry(db) -> None:
    clock = lambda: NOW  # noqa: E731
    request = CacheStoreRequest.model_validate_json(
        '{"query_text": "when is dana free", "response_text": "Monday", "expires_at": "2030-01-01T10:00:00Z"}'
    )

    stored = store_cached_response(request, db=db, clock=clock)
    hit = lookup_cached_response(CacheLookupRequest(query_text='When is Dana free'), db=db, clock=clock)

    assert stored.stored is True
    assert hit.hit is True
    assert hit.response_text == 'Monday'


def test_statistics_report_manual_cleanups(db) -> None:
    later = lambda: NOW + timedelta(hours=1)  # noqa: E731

    assert cache_statistics(db=db, clock=later).total_cleanups == 0

    cleanup_cache(db=db, clock=later)
    statistics = cache_statistics(db=db, clock=later)

    assert statistics.total_cleanups == 1
    assert statistics.last_cleanup == NOW + timedelta(hours=1)
    assert [log.cleanup_trigger for log in db.query(CacheCleanupLog).all()] == ['manual']
