"""Therapist model definitions."""

from sqlalchemy import Column, Integer, String, Float, JSON
from therapy_scheduler.database import Base


class Therapist(Base):
    """Represents a care provider and their weekly workload target."""
    __tablename__ = "therapists"

    id = Column(Integer, primary_key=True)
    full_name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")
    service_types = Column(JSON, default=list)
    specialties = Column(JSON, default=list)
    weekly_hours_min = Column(Float, default=0)
    weekly_hours_max = Column(Float, default=0)
