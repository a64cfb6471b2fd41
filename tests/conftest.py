import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from therapy_scheduler.database import Base  # noqa: E402
from therapy_scheduler.models.availability import AvailabilityWindowRow  # noqa: E402
from therapy_scheduler.models.cache_cleanup_log import CacheCleanupLog  # noqa: E402, F401
from therapy_scheduler.models.cache_entry import CachedResponse  # noqa: E402, F401
from therapy_scheduler.models.client import Client  # noqa: E402
from therapy_scheduler.models.session import TherapySession  # noqa: E402
from therapy_scheduler.models.therapist import Therapist  # noqa: E402
from therapy_scheduler.scheduling.repository import SqlAlchemySchedulingRepository  # noqa: E402

# Sunday morning before the Monday 2026-01-05 test week.
REFERENCE_NOW = datetime(2026, 1, 4, 7, 0)


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return lambda: REFERENCE_NOW


@pytest.fixture
def repository(db):
    return SqlAlchemySchedulingRepository(db)


@pytest.fixture
def make_therapist(db):
    def factory(full_name='Dana Therapist', **fields):
        therapist = Therapist(
            full_name=full_name,
            status=fields.pop('status', 'active'),
            service_types=fields.pop('service_types', ['ABA']),
            specialties=fields.pop('specialties', []),
            weekly_hours_min=fields.pop('weekly_hours_min', 20),
            weekly_hours_max=fields.pop('weekly_hours_max', 40),
            **fields,
        )
        db.add(therapist)
        db.commit()
        db.refresh(therapist)
        return therapist

    return factory


@pytest.fixture
def make_client(db):
    def factory(full_name='Casey Client', **fields):
        client = Client(
            full_name=full_name,
            status=fields.pop('status', 'active'),
            service_preferences=fields.pop('service_preferences', ['ABA']),
            primary_diagnosis=fields.pop('primary_diagnosis', None),
            **fields,
        )
        db.add(client)
        db.commit()
        db.refresh(client)
        return client

    return factory


@pytest.fixture
def make_session(db):
    def factory(therapist, client, start_time, end_time, status='scheduled', notes=None):
        session = TherapySession(
            therapist_id=therapist.id,
            client_id=client.id,
            start_time=start_time,
            end_time=end_time,
            status=status,
            notes=notes,
        )
        db.add(session)
        db.commit()
        db.refresh(session)
        return session

    return factory


@pytest.fixture
def make_availability(db):
    def factory(owner_type, owner_id, day_of_week, start_time, end_time):
        window = AvailabilityWindowRow(
            owner_type=owner_type,
            owner_id=owner_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
        )
        db.add(window)
        db.commit()
        db.refresh(window)
        return window

    return factory
