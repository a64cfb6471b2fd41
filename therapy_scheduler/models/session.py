"""Therapy session model definitions."""

from sqlalchemy import Column, Integer, DateTime, ForeignKey, String, Text
from therapy_scheduler.database import Base


class TherapySession(Base):
    """Represents a booked therapy session between a therapist and a client."""
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    therapist_id = Column(Integer, ForeignKey("therapists.id"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default="scheduled")  # scheduled/completed/cancelled/no-show
    notes = Column(Text)
