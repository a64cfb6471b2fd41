from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from therapy_scheduler.cache.semantic_cache import (
    TRIGGER_SCHEDULED,
    SemanticCache,
    make_key,
    normalize_query,
    to_naive_local,
)
from therapy_scheduler.core.errors import SchedulingValidationError, StoreError
from therapy_scheduler.database import Base
from therapy_scheduler.models.cache_cleanup_log import CacheCleanupLog
from therapy_scheduler.models.cache_entry import CachedResponse
from therapy_scheduler.tasks import cleanup_semantic_cache

NOW = datetime(2026, 1, 5, 9, 0)


class BrokenSession:
    """Stands in for a session whose database connection has gone away."""

    def __init__(self):
        self.rolled_back = False
        self.closed = False

    def query(self, *args, **kwargs):
        raise OperationalError('SELECT 1', {}, Exception('connection refused'))

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


@pytest.fixture
def cache(db):
    return SemanticCache(db, clock=lambda: NOW)


def stored_row(db, cache_key: str) -> CachedResponse:
    db.expire_all()
    return db.query(CachedResponse).filter(CachedResponse.cache_key == cache_key).one()


def test_make_key_ignores_case_and_whitespace() -> None:
    assert make_key('Hello   World') == make_key('hello world')
    assert make_key('  Find a slot\tfor\nMonday ') == make_key('find a slot for monday')
    assert normalize_query('  Find   A  Slot ') == 'find a slot'


def test_make_key_separates_contexts() -> None:
    plain = make_key('next available slot')
    scoped = make_key('next available slot', 'therapist-7')

    assert plain.startswith('ai_')
    assert scoped.startswith(plain + '_')
    assert scoped != make_key('next available slot', 'therapist-8')


def test_make_key_requires_text() -> None:
    with pytest.raises(SchedulingValidationError):
        make_key('   ')


def test_get_misses_unknown_key(cache) -> None:
    assert cache.get(make_key('never stored')) is None


def test_put_then_get_counts_hits(cache) -> None:
    key = make_key('When is Dana free?')

    assert cache.put(key, 'When is Dana free?', 'Monday at 10:00', metadata={'model': 'scheduler'}) is True

    first = cache.get(key)
    second = cache.get(key)

    assert first.response_text == 'Monday at 10:00'
    assert first.metadata == {'model': 'scheduler'}
    assert first.hit_count == 1
    assert second.hit_count == 2


def test_expired_entry_is_a_miss_and_not_counted(db) -> None:
    key = make_key('expired question')
    SemanticCache(db, clock=lambda: NOW).put(key, 'expired question', 'old answer', expires_at=NOW + timedelta(minutes=5))

    later = SemanticCache(db, clock=lambda: NOW + timedelta(minutes=10))

    assert later.get(key) is None
    assert stored_row(db, key).hit_count == 0


def test_put_overwrites_and_keeps_hit_count(cache, db) -> None:
    key = make_key('who covers tuesday')
    cache.put(key, 'who covers tuesday', 'Dana')
    cache.get(key)
    created_at = stored_row(db, key).created_at

    cache.put(key, 'Who covers Tuesday', 'Emery', metadata={'revision': 2})
    hit = cache.get(key)

    assert hit.response_text == 'Emery'
    assert hit.metadata == {'revision': 2}
    assert hit.hit_count == 2
    assert stored_row(db, key).created_at == created_at
    assert db.query(CachedResponse).count() == 1


def test_put_rejects_past_expiry(cache) -> None:
    with pytest.raises(SchedulingValidationError):
        cache.put(make_key('question'), 'question', 'answer', expires_at=NOW)


def test_store_and_lookup_share_normalisation(cache) -> None:
    key = cache.store('Any openings   Friday?', 'Friday 14:00', context_hash='client-3')

    hit = cache.lookup('any openings friday?', context_hash='client-3')

    assert hit.cache_key == key
    assert cache.lookup('any openings friday?') is None


def test_cleanup_removes_expired_and_idle_entries(cache, db) -> None:
    fresh = make_key('fresh question')
    idle = make_key('idle question')
    recently_read = make_key('recently read question')
    expired = make_key('expired question')
    for key, text in ((fresh, 'fresh question'), (idle, 'idle question'), (recently_read, 'recently read question')):
        cache.put(key, text, 'answer', expires_at=NOW + timedelta(days=30))
        cache.get(key)
    cache.put(expired, 'expired question', 'answer', expires_at=NOW + timedelta(seconds=1))

    idle_row = stored_row(db, idle)
    read_row = stored_row(db, recently_read)
    idle_row.created_at = NOW - timedelta(days=8)
    idle_row.last_hit_at = NOW - timedelta(days=3)
    read_row.created_at = NOW - timedelta(days=8)
    read_row.last_hit_at = NOW - timedelta(days=1)
    db.commit()

    result = SemanticCache(db, clock=lambda: NOW + timedelta(minutes=1)).cleanup()

    assert result.expired_removed == 1
    assert result.stale_removed == 1
    assert result.total_removed == 2
    assert result.duration_ms >= 0
    remaining = {row.cache_key for row in db.query(CachedResponse).all()}
    assert remaining == {fresh, recently_read}


def test_cleanup_removes_old_entries_never_read(cache, db) -> None:
    key = make_key('unread question')
    cache.put(key, 'unread question', 'answer', expires_at=NOW + timedelta(days=30))
    stored_row(db, key).created_at = NOW - timedelta(days=8)
    db.commit()

    result = cache.cleanup()

    assert (result.expired_removed, result.stale_removed) == (0, 1)


def test_statistics(cache) -> None:
    key = make_key('stats question')
    cache.put(key, 'stats question', 'answer')
    cache.get(key)
    cache.get(key)
    cache.put(make_key('other question'), 'other question', 'answer')

    statistics = cache.statistics()

    assert statistics.total_entries == 2
    assert statistics.valid_entries == 2
    assert statistics.expired_entries == 0
    assert statistics.total_hits == 2
    assert statistics.hit_rate == 50.0
    assert statistics.average_hits == 1.0


def test_store_failures_fail_open_on_reads_and_writes() -> None:
    session = BrokenSession()
    cache = SemanticCache(session, clock=lambda: NOW)

    assert cache.get(make_key('question')) is None
    assert cache.put(make_key('question'), 'question', 'answer') is False
    assert session.rolled_back


def test_store_failures_surface_from_cleanup() -> None:
    with pytest.raises(StoreError):
        SemanticCache(BrokenSession(), clock=lambda: NOW).cleanup()


def test_concurrent_gets_never_lose_increments(tmp_path) -> None:
    engine = create_engine(f'sqlite:///{tmp_path / "cache.db"}', connect_args={'check_same_thread': False})
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    key = make_key('busy question')

    setup = session_factory()
    SemanticCache(setup, clock=lambda: NOW).put(key, 'busy question', 'answer')
    setup.close()

    def read_five_times():
        session = session_factory()
        try:
            cache = SemanticCache(session, clock=lambda: NOW)
            return [cache.get(key) is not None for _ in range(5)]
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = [hit for batch in executor.map(lambda _: read_five_times(), range(8)) for hit in batch]

    check = session_factory()
    try:
        assert all(results)
        assert check.query(CachedResponse).filter(CachedResponse.cache_key == key).one().hit_count == 40
    finally:
        check.close()
        engine.dispose()


def test_cleanup_task_reports_result(db) -> None:
    engine = db.get_bind()
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    result = cleanup_semantic_cache(session_factory)

    assert result is not None
    assert result.total_removed == 0


def test_cleanup_task_swallows_store_errors() -> None:
    session = BrokenSession()

    assert cleanup_semantic_cache(lambda: session) is None
    assert session.closed


def test_put_accepts_timezone_aware_expiry(cache, db) -> None:
    key = make_key('aware expiry')
    expires_at = datetime(2030, 1, 1, 10, 0, tzinfo=timezone.utc)

    assert cache.put(key, 'aware expiry', 'answer', expires_at=expires_at) is True

    assert stored_row(db, key).expires_at == to_naive_local(expires_at)
    assert cache.get(key).hit_count == 1


def test_put_rejects_timezone_aware_past_expiry(cache) -> None:
    with pytest.raises(SchedulingValidationError):
        cache.put(make_key('question'), 'question', 'answer', expires_at=datetime(2020, 1, 1, tzinfo=timezone.utc))


def test_cleanup_reclaims_entries_expiring_exactly_now(cache, db) -> None:
    key = make_key('boundary question')
    cache.put(key, 'boundary question', 'answer', expires_at=NOW + timedelta(minutes=1))
    at_expiry = SemanticCache(db, clock=lambda: NOW + timedelta(minutes=1))

    assert at_expiry.get(key) is None
    assert at_expiry.cleanup().expired_removed == 1


def test_cleanup_records_history_for_statistics(cache, db) -> None:
    assert cache.statistics().total_cleanups == 0
    assert cache.statistics().last_cleanup is None

    cache.put(make_key('short lived'), 'short lived', 'answer', expires_at=NOW + timedelta(minutes=1))
    later = SemanticCache(db, clock=lambda: NOW + timedelta(hours=1))
    later.cleanup()
    later.cleanup(trigger=TRIGGER_SCHEDULED)

    logs = db.query(CacheCleanupLog).order_by(CacheCleanupLog.id).all()
    assert [log.cleanup_trigger for log in logs] == ['manual', 'scheduled']
    assert [log.items_cleaned for log in logs] == [1, 0]
    assert logs[0].expired_removed == 1
    assert logs[0].cleanup_type == 'ai_cache'

    statistics = later.statistics()
    assert statistics.total_cleanups == 2
    assert statistics.last_cleanup == NOW + timedelta(hours=1)


def test_cleanup_task_logs_a_scheduled_sweep(db) -> None:
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=db.get_bind())

    cleanup_semantic_cache(session_factory)

    assert [log.cleanup_trigger for log in db.query(CacheCleanupLog).all()] == ['scheduled']
