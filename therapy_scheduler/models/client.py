"""Client model definitions."""

from sqlalchemy import Column, Integer, String, JSON
from therapy_scheduler.database import Base


class Client(Base):
    """Represents a client receiving therapy services."""
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True)
    full_name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")
    service_preferences = Column(JSON, default=list)
    primary_diagnosis = Column(String)
