"""Semantic response cache model definitions."""

from sqlalchemy import Column, Integer, DateTime, String, Text, JSON
from therapy_scheduler.database import Base


class CachedResponse(Base):
    """Represents a cached response to a normalized scheduling query."""
    __tablename__ = "ai_response_cache"

    id = Column(Integer, primary_key=True)
    cache_key = Column(String, unique=True, nullable=False, index=True)
    query_text = Column(Text, nullable=False)
    query_hash = Column(String, nullable=False)
    response_text = Column(Text, nullable=False)
    response_metadata = Column("metadata", JSON, default=dict)
    hit_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    last_hit_at = Column(DateTime)
    expires_at = Column(DateTime, nullable=False)
