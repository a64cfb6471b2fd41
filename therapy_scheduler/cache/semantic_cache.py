"""
Semantic response cache for natural-language scheduling queries.

Queries are normalised (lowercase, trimmed, whitespace runs collapsed) and
hashed, so lexically equivalent phrasings share one entry. Entries live in
the ``ai_response_cache`` table; hit counting is a single atomic UPDATE so
concurrent readers never lose increments, and same-key operations in this
process are additionally serialised through a striped lock.

The cache is a pure optimisation: store failures on lookups and writes are
logged and reported as a miss / not stored instead of failing the request.
"""
import hashlib
import logging
import re
import time as time_module
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Callable, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from therapy_scheduler.core import config
from therapy_scheduler.core.errors import SchedulingValidationError, StoreError
from therapy_scheduler.models.cache_cleanup_log import CacheCleanupLog
from therapy_scheduler.models.cache_entry import CachedResponse

logger = logging.getLogger(__name__)

KEY_PREFIX = 'ai_'
CLEANUP_TYPE = 'ai_cache'
TRIGGER_MANUAL = 'manual'
TRIGGER_SCHEDULED = 'scheduled'
_WHITESPACE_RUN = re.compile(r'\s+')
_LOCK_STRIPES = [Lock() for _ in range(64)]


def normalize_query(query_text: str) -> str:
    return _WHITESPACE_RUN.sub(' ', query_text.strip()).lower()


def hash_text(value: str) -> str:
    return hashlib.sha256(value.encode('utf-8')).hexdigest()


def make_key(query_text: str, context_hash: Optional[str] = None) -> str:
    normalized = normalize_query(query_text or '')
    if not normalized:
        raise SchedulingValidationError('Query text is required to build a cache key.')

    query_hash = hash_text(normalized)
    if context_hash is not None:
        return f'{KEY_PREFIX}{query_hash}_{hash_text(context_hash)}'
    return f'{KEY_PREFIX}{query_hash}'


def to_naive_local(moment: datetime) -> datetime:
    """Stored timestamps are naive local time; aware input is converted first."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone().replace(tzinfo=None)


def _lock_for(cache_key: str) -> Lock:
    return _LOCK_STRIPES[int(hash_text(cache_key)[:8], 16) % len(_LOCK_STRIPES)]


@dataclass(frozen=True)
class CacheHit:
    cache_key: str
    response_text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    hit_count: int = 0
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class CleanupResult:
    expired_removed: int
    stale_removed: int
    duration_ms: float

    @property
    def total_removed(self) -> int:
        return self.expired_removed + self.stale_removed


@dataclass(frozen=True)
class CacheStatistics:
    total_entries: int
    valid_entries: int
    expired_entries: int
    total_hits: int
    hit_rate: float
    average_hits: float
    total_cleanups: int = 0
    last_cleanup: Optional[datetime] = None


class SemanticCache:
    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = datetime.now,
        ttl_seconds: int = config.CACHE_TTL_SECONDS,
        retention_days: int = config.CACHE_RETENTION_DAYS,
        idle_days: int = config.CACHE_IDLE_DAYS,
    ):
        self.db = db
        self.clock = clock
        self.ttl = timedelta(seconds=ttl_seconds)
        self.retention = timedelta(days=retention_days)
        self.idle = timedelta(days=idle_days)

    def get(self, cache_key: str) -> Optional[CacheHit]:
        with _lock_for(cache_key):
            now = self.clock()
            try:
                updated = self.db.query(CachedResponse).filter(
                    CachedResponse.cache_key == cache_key,
                    CachedResponse.expires_at > now,
                ).update(
                    {
                        CachedResponse.hit_count: CachedResponse.hit_count + 1,
                        CachedResponse.last_hit_at: now,
                    },
                    synchronize_session=False,
                )
                if not updated:
                    self.db.rollback()
                    logger.debug('Cache MISS: %s', cache_key)
                    return None

                row = self.db.query(CachedResponse).filter(
                    CachedResponse.cache_key == cache_key,
                ).populate_existing().one()
                hit = CacheHit(
                    cache_key=row.cache_key,
                    response_text=row.response_text,
                    metadata=dict(row.response_metadata or {}),
                    hit_count=row.hit_count,
                    created_at=row.created_at,
                )
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.warning('Cache lookup failed for %s, treating as miss: %s', cache_key, exc)
                return None

        logger.debug('Cache HIT: %s (hits=%s)', cache_key, hit.hit_count)
        return hit

    def put(
        self,
        cache_key: str,
        query_text: str,
        response_text: str,
        metadata: Optional[dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
    ) -> bool:
        if not cache_key or not cache_key.strip():
            raise SchedulingValidationError('Cache key is required.')
        if not query_text or not query_text.strip():
            raise SchedulingValidationError('Query text is required.')

        now = self.clock()
        expires_at = to_naive_local(expires_at) if expires_at else now + self.ttl
        if expires_at <= now:
            raise SchedulingValidationError('Cache expiry must be in the future.')

        with _lock_for(cache_key):
            for attempt in range(2):
                try:
                    self._upsert(cache_key, query_text, response_text, metadata or {}, expires_at, now)
                    self.db.commit()
                    logger.debug('Cache SET: %s (expires %s)', cache_key, expires_at.isoformat())
                    return True
                except IntegrityError:
                    # Another writer inserted the key first; retry as an overwrite.
                    self.db.rollback()
                    if attempt:
                        logger.warning('Cache write for %s lost to concurrent inserts', cache_key)
                        return False
                except SQLAlchemyError as exc:
                    self.db.rollback()
                    logger.warning('Cache write failed for %s: %s', cache_key, exc)
                    return False
        return False

    def _upsert(self, cache_key, query_text, response_text, metadata, expires_at, now) -> None:
        row = self.db.query(CachedResponse).filter(
            CachedResponse.cache_key == cache_key,
        ).populate_existing().first()

        if row is None:
            self.db.add(
                CachedResponse(
                    cache_key=cache_key,
                    query_text=query_text,
                    query_hash=hash_text(query_text),
                    response_text=response_text,
                    response_metadata=metadata,
                    hit_count=0,
                    created_at=now,
                    updated_at=now,
                    expires_at=expires_at,
                )
            )
        else:
            row.query_text = query_text
            row.query_hash = hash_text(query_text)
            row.response_text = response_text
            row.response_metadata = metadata
            row.expires_at = expires_at
            row.updated_at = now
        self.db.flush()

    def lookup(self, query_text: str, context_hash: Optional[str] = None) -> Optional[CacheHit]:
        return self.get(make_key(query_text, context_hash))

    def store(
        self,
        query_text: str,
        response_text: str,
        metadata: Optional[dict[str, Any]] = None,
        context_hash: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> Optional[str]:
        cache_key = make_key(query_text, context_hash)
        if self.put(cache_key, query_text, response_text, metadata, expires_at):
            return cache_key
        return None

    def cleanup(self, trigger: str = TRIGGER_MANUAL) -> CleanupResult:
        """Remove expired entries, then old entries nobody has read recently.

        The sweep and its ``cache_cleanup_logs`` row commit together.
        """
        started = time_module.perf_counter()
        now = self.clock()
        try:
            # Same boundary as get(): an entry expiring at now is already a miss.
            expired = self.db.query(CachedResponse).filter(
                CachedResponse.expires_at <= now,
            ).delete(synchronize_session=False)
            stale = self.db.query(CachedResponse).filter(
                CachedResponse.created_at < now - self.retention,
                or_(
                    CachedResponse.last_hit_at.is_(None),
                    CachedResponse.last_hit_at < now - self.idle,
                ),
            ).delete(synchronize_session=False)

            result = CleanupResult(
                expired_removed=expired,
                stale_removed=stale,
                duration_ms=round((time_module.perf_counter() - started) * 1000, 2),
            )
            self.db.add(
                CacheCleanupLog(
                    cleanup_type=CLEANUP_TYPE,
                    items_cleaned=result.total_removed,
                    expired_removed=result.expired_removed,
                    stale_removed=result.stale_removed,
                    duration_ms=result.duration_ms,
                    cleanup_trigger=trigger,
                    created_at=now,
                )
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Semantic cache cleanup failed.')
            raise StoreError('Data store unavailable during cache cleanup.') from exc

        logger.info(
            'Semantic cache cleanup (%s) removed %s expired and %s stale entries',
            trigger,
            result.expired_removed,
            result.stale_removed,
        )
        return result

    def statistics(self) -> CacheStatistics:
        now = self.clock()
        try:
            total, total_hits = self.db.query(
                func.count(CachedResponse.id),
                func.coalesce(func.sum(CachedResponse.hit_count), 0),
            ).one()
            valid = self.db.query(func.count(CachedResponse.id)).filter(
                CachedResponse.expires_at > now,
            ).scalar()
            total_cleanups, last_cleanup = self.db.query(
                func.count(CacheCleanupLog.id),
                func.max(CacheCleanupLog.created_at),
            ).filter(
                CacheCleanupLog.cleanup_type == CLEANUP_TYPE,
            ).one()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Semantic cache statistics query failed.')
            raise StoreError('Data store unavailable while reading cache statistics.') from exc

        total = int(total or 0)
        total_hits = int(total_hits or 0)
        valid = int(valid or 0)
        return CacheStatistics(
            total_entries=total,
            valid_entries=valid,
            expired_entries=total - valid,
            total_hits=total_hits,
            hit_rate=round(total_hits / (total_hits + total) * 100, 2) if total else 0.0,
            average_hits=round(total_hits / total, 2) if total else 0.0,
            total_cleanups=int(total_cleanups or 0),
            last_cleanup=last_cleanup,
        )
