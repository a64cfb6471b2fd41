from datetime import datetime
from typing import Any, Callable

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from therapy_scheduler.cache.semantic_cache import TRIGGER_MANUAL, SemanticCache, make_key
from therapy_scheduler.database import get_db
from therapy_scheduler.routes.common import ensure_database_ready, get_clock, translate_errors

router = APIRouter(tags=['cache'])

MAX_QUERY_LENGTH = 4000


def _normalize_query_text(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError('Query text is required.')
    if len(normalized) > MAX_QUERY_LENGTH:
        raise ValueError(f'Query text must be {MAX_QUERY_LENGTH} characters or fewer.')
    return normalized


class CacheLookupRequest(BaseModel):
    query_text: str
    context_hash: str | None = None

    @field_validator('query_text')
    @classmethod
    def validate_query_text(cls, value: str) -> str:
        return _normalize_query_text(value)


class CacheLookupResponse(BaseModel):
    cache_key: str
    hit: bool
    response_text: str | None = None
    metadata: dict[str, Any] = {}
    hit_count: int = 0


class CacheStoreRequest(BaseModel):
    query_text: str
    response_text: str
    metadata: dict[str, Any] = {}
    context_hash: str | None = None
    expires_at: datetime | None = None

    @field_validator('query_text')
    @classmethod
    def validate_query_text(cls, value: str) -> str:
        return _normalize_query_text(value)


class CacheStoreResponse(BaseModel):
    cache_key: str
    stored: bool


class CacheCleanupResponse(BaseModel):
    expired_removed: int
    stale_removed: int
    total_removed: int
    duration_ms: float


class CacheStatisticsResponse(BaseModel):
    total_entries: int
    valid_entries: int
    expired_entries: int
    total_hits: int
    hit_rate: float
    average_hits: float
    total_cleanups: int
    last_cleanup: datetime | None = None

    class Config:
        from_attributes = True


@router.post('/lookup', response_model=CacheLookupResponse)
def lookup_cached_response(
    data: CacheLookupRequest,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with translate_errors():
        cache_key = make_key(data.query_text, data.context_hash)
        hit = SemanticCache(db, clock=clock).get(cache_key)

    if hit is None:
        return CacheLookupResponse(cache_key=cache_key, hit=False)

    return CacheLookupResponse(
        cache_key=cache_key,
        hit=True,
        response_text=hit.response_text,
        metadata=hit.metadata,
        hit_count=hit.hit_count,
    )


@router.put('/entries', response_model=CacheStoreResponse)
def store_cached_response(
    data: CacheStoreRequest,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with translate_errors():
        cache_key = make_key(data.query_text, data.context_hash)
        stored = SemanticCache(db, clock=clock).put(
            cache_key,
            data.query_text,
            data.response_text,
            metadata=data.metadata,
            expires_at=data.expires_at,
        )

    return CacheStoreResponse(cache_key=cache_key, stored=stored)


@router.post('/cleanup', response_model=CacheCleanupResponse)
def cleanup_cache(
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with translate_errors():
        result = SemanticCache(db, clock=clock).cleanup(trigger=TRIGGER_MANUAL)

    return CacheCleanupResponse(
        expired_removed=result.expired_removed,
        stale_removed=result.stale_removed,
        total_removed=result.total_removed,
        duration_ms=result.duration_ms,
    )


@router.get('/statistics', response_model=CacheStatisticsResponse)
def cache_statistics(
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with translate_errors():
        statistics = SemanticCache(db, clock=clock).statistics()

    return CacheStatisticsResponse.model_validate(statistics)
