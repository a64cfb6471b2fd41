"""Cache cleanup history model definitions."""

from sqlalchemy import Column, Integer, DateTime, Float, String
from therapy_scheduler.database import Base


class CacheCleanupLog(Base):
    """Represents one sweep over the semantic response cache."""
    __tablename__ = "cache_cleanup_logs"

    id = Column(Integer, primary_key=True)
    cleanup_type = Column(String, nullable=False, default="ai_cache")
    items_cleaned = Column(Integer, nullable=False, default=0)
    expired_removed = Column(Integer, nullable=False, default=0)
    stale_removed = Column(Integer, nullable=False, default=0)
    duration_ms = Column(Float)
    cleanup_trigger = Column(String, nullable=False)  # scheduled/manual
    created_at = Column(DateTime, nullable=False, index=True)
