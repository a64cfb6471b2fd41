"""Data access for the scheduling services.

The services only depend on :class:`SchedulingRepository`; the SQLAlchemy
adapter below is what the HTTP layer wires in. Tests use the same adapter on
an in-memory SQLite engine.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional, Protocol

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from therapy_scheduler.core.errors import NotFoundError, SchedulingValidationError, StoreError
from therapy_scheduler.models.availability import AvailabilityWindowRow
from therapy_scheduler.models.client import Client
from therapy_scheduler.models.session import TherapySession
from therapy_scheduler.models.therapist import Therapist
from therapy_scheduler.scheduling.records import (
    AvailabilityWindow,
    ClientProfile,
    SessionRecord,
    TherapistProfile,
)

logger = logging.getLogger(__name__)


class SchedulingRepository(Protocol):
    def list_sessions(
        self,
        start: datetime,
        end: datetime,
        statuses: Iterable[str],
        therapist_id: Optional[int] = None,
        client_id: Optional[int] = None,
    ) -> list[SessionRecord]:
        ...

    def list_overlapping_sessions(
        self,
        start: datetime,
        end: datetime,
        statuses: Iterable[str],
        therapist_ids: Optional[Iterable[int]] = None,
        client_ids: Optional[Iterable[int]] = None,
    ) -> list[SessionRecord]:
        ...

    def get_session(self, session_id: int) -> SessionRecord:
        ...

    def get_therapist(self, therapist_id: int) -> TherapistProfile:
        ...

    def get_client(self, client_id: int) -> ClientProfile:
        ...

    def list_active_therapists(self) -> list[TherapistProfile]:
        ...

    def list_availability(self, owner_type: str, owner_id: int) -> list[AvailabilityWindow]:
        ...


def _to_session_record(row: TherapySession) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        client_id=row.client_id,
        therapist_id=row.therapist_id,
        start_time=row.start_time,
        end_time=row.end_time,
        status=row.status,
        notes=row.notes,
    )


def _to_therapist_profile(row: Therapist) -> TherapistProfile:
    return TherapistProfile(
        id=row.id,
        full_name=row.full_name,
        status=row.status or 'active',
        service_types=frozenset(row.service_types or []),
        specialties=frozenset(row.specialties or []),
        weekly_hours_min=float(row.weekly_hours_min or 0),
        weekly_hours_max=float(row.weekly_hours_max or 0),
    )


def _to_client_profile(row: Client) -> ClientProfile:
    return ClientProfile(
        id=row.id,
        full_name=row.full_name,
        status=row.status or 'active',
        service_preferences=frozenset(row.service_preferences or []),
        primary_diagnosis=row.primary_diagnosis,
    )


def _to_availability_window(row: AvailabilityWindowRow) -> AvailabilityWindow:
    return AvailabilityWindow(
        owner_type=row.owner_type,
        owner_id=row.owner_id,
        day_of_week=row.day_of_week,
        start_time=row.start_time,
        end_time=row.end_time,
    )


class SqlAlchemySchedulingRepository:
    def __init__(self, db: Session):
        self.db = db

    def _run(self, operation: str, query):
        try:
            return query()
        except SQLAlchemyError as exc:
            logger.exception('Scheduling store query failed: %s', operation)
            raise StoreError(f'Data store unavailable while running {operation}.') from exc
        except SchedulingValidationError as exc:
            raise StoreError(f'Malformed record returned by {operation}: {exc}') from exc

    def list_sessions(self, start, end, statuses, therapist_id=None, client_id=None):
        def query():
            rows = self.db.query(TherapySession).filter(
                TherapySession.start_time >= start,
                TherapySession.start_time < end,
                TherapySession.status.in_(list(statuses)),
            )
            if therapist_id is not None:
                rows = rows.filter(TherapySession.therapist_id == therapist_id)
            if client_id is not None:
                rows = rows.filter(TherapySession.client_id == client_id)
            return [
                _to_session_record(row)
                for row in rows.order_by(TherapySession.start_time.asc(), TherapySession.id.asc()).all()
            ]

        return self._run('list_sessions', query)

    def list_overlapping_sessions(self, start, end, statuses, therapist_ids=None, client_ids=None):
        def query():
            rows = self.db.query(TherapySession).filter(
                TherapySession.start_time < end,
                TherapySession.end_time > start,
                TherapySession.status.in_(list(statuses)),
            )
            party_filters = []
            if therapist_ids is not None:
                party_filters.append(TherapySession.therapist_id.in_(list(therapist_ids)))
            if client_ids is not None:
                party_filters.append(TherapySession.client_id.in_(list(client_ids)))
            if party_filters:
                rows = rows.filter(or_(*party_filters))
            return [
                _to_session_record(row)
                for row in rows.order_by(TherapySession.start_time.asc(), TherapySession.id.asc()).all()
            ]

        return self._run('list_overlapping_sessions', query)

    def get_session(self, session_id):
        row = self._run('get_session', lambda: self.db.get(TherapySession, session_id))
        if row is None:
            raise NotFoundError('session', session_id)
        return self._run('get_session', lambda: _to_session_record(row))

    def get_therapist(self, therapist_id):
        row = self._run('get_therapist', lambda: self.db.get(Therapist, therapist_id))
        if row is None:
            raise NotFoundError('therapist', therapist_id)
        return _to_therapist_profile(row)

    def get_client(self, client_id):
        row = self._run('get_client', lambda: self.db.get(Client, client_id))
        if row is None:
            raise NotFoundError('client', client_id)
        return _to_client_profile(row)

    def list_active_therapists(self):
        def query():
            rows = self.db.query(Therapist).filter(
                Therapist.status == 'active',
            ).order_by(Therapist.full_name.asc(), Therapist.id.asc()).all()
            return [_to_therapist_profile(row) for row in rows]

        return self._run('list_active_therapists', query)

    def list_availability(self, owner_type, owner_id):
        def query():
            rows = self.db.query(AvailabilityWindowRow).filter(
                AvailabilityWindowRow.owner_type == owner_type,
                AvailabilityWindowRow.owner_id == owner_id,
            ).order_by(AvailabilityWindowRow.day_of_week.asc(), AvailabilityWindowRow.start_time.asc()).all()
            return [_to_availability_window(row) for row in rows]

        return self._run('list_availability', query)
