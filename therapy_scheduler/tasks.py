"""
Scheduled Tasks

Periodic jobs meant to be triggered by an external scheduler (cron, a
worker beat, ...):
- cleanup_semantic_cache: drops expired and idle semantic cache entries
"""

import logging

from therapy_scheduler.cache.semantic_cache import TRIGGER_SCHEDULED, CleanupResult, SemanticCache
from therapy_scheduler.core.errors import StoreError
from therapy_scheduler.database import SessionLocal

logger = logging.getLogger(__name__)


def cleanup_semantic_cache(session_factory=SessionLocal) -> CleanupResult | None:
    """
    Run one cleanup sweep over the semantic cache.

    The sweep is a predicate delete, so it can run alongside normal traffic
    and can simply be re-run after an interruption. Store failures are logged
    and reported as ``None`` so the scheduler keeps its cadence.
    """
    db = session_factory()
    try:
        return SemanticCache(db).cleanup(trigger=TRIGGER_SCHEDULED)
    except StoreError:
        logger.exception('cleanup_semantic_cache: sweep aborted, will retry on next run')
        return None
    finally:
        db.close()
