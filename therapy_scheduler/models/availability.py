"""Availability window model definitions."""

from sqlalchemy import Column, Integer, String, Time
from therapy_scheduler.database import Base


class AvailabilityWindowRow(Base):
    """Represents a recurring weekly slot for a therapist or a client."""
    __tablename__ = "availability_windows"

    id = Column(Integer, primary_key=True)
    owner_type = Column(String, nullable=False)  # therapist/client
    owner_id = Column(Integer, nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Monday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
