"""Double-booking detection over a date range.

Pairs are reported as ordered pairs: when sessions A and B both start inside
the range and overlap, both (A, B) and (B, A) are emitted. Only sessions that
share a therapist or a client can conflict today, so ``resource_conflict`` is
kept in the type map for future resource types but is never produced.
"""

import logging
import uuid
from datetime import date, datetime, time, timedelta
from typing import Optional

from therapy_scheduler.core.errors import SchedulingValidationError
from therapy_scheduler.scheduling.alternatives import AlternativeRecommender
from therapy_scheduler.scheduling.intervals import overlaps
from therapy_scheduler.scheduling.records import (
    CLIENT_DOUBLE_BOOKING,
    RESOURCE_CONFLICT,
    STATUS_SCHEDULED,
    THERAPIST_DOUBLE_BOOKING,
    Conflict,
    SessionRecord,
)
from therapy_scheduler.scheduling.repository import SchedulingRepository

logger = logging.getLogger(__name__)


def classify_pair(first: SessionRecord, second: SessionRecord) -> Optional[str]:
    if not overlaps(first.start_time, first.end_time, second.start_time, second.end_time):
        return None
    if first.therapist_id == second.therapist_id:
        return THERAPIST_DOUBLE_BOOKING
    if first.client_id == second.client_id:
        return CLIENT_DOUBLE_BOOKING
    return None


class ConflictDetector:
    def __init__(self, repository: SchedulingRepository, recommender: Optional[AlternativeRecommender] = None):
        self.repository = repository
        self.recommender = recommender

    def detect(self, start_date: date, end_date: date, include_suggestions: bool = False) -> list[Conflict]:
        if end_date < start_date:
            raise SchedulingValidationError('end_date must not be before start_date.')
        if include_suggestions and self.recommender is None:
            raise SchedulingValidationError('Suggestions requested but no recommender is configured.')

        in_range = self.repository.list_sessions(
            datetime.combine(start_date, time.min),
            datetime.combine(end_date + timedelta(days=1), time.min),
            [STATUS_SCHEDULED],
        )
        if not in_range:
            return []

        # Partners may start outside the range, so fetch everything touching the span.
        span_start = min(session.start_time for session in in_range)
        span_end = max(session.end_time for session in in_range)
        partners = self.repository.list_overlapping_sessions(span_start, span_end, [STATUS_SCHEDULED])

        conflicts: list[Conflict] = []
        for first in in_range:
            for second in partners:
                if first.id == second.id:
                    continue
                conflict_type = classify_pair(first, second)
                if conflict_type is None:
                    continue
                conflicts.append(self._build_conflict(conflict_type, first, second, include_suggestions))

        conflicts.sort(key=lambda conflict: (-conflict.severity, conflict.first.start_time, conflict.first.id))
        if conflicts:
            logger.info(
                'Detected %s scheduling conflicts between %s and %s',
                len(conflicts),
                start_date,
                end_date,
            )
        return conflicts

    def _build_conflict(
        self,
        conflict_type: str,
        first: SessionRecord,
        second: SessionRecord,
        include_suggestions: bool,
    ) -> Conflict:
        resolutions: list = []
        auto_resolvable = True

        if conflict_type == THERAPIST_DOUBLE_BOOKING:
            if include_suggestions:
                resolutions = self.recommender.alternative_therapists(
                    first.client_id,
                    first.start_time,
                    first.end_time,
                    exclude_therapist_id=first.therapist_id,
                )
        elif conflict_type == CLIENT_DOUBLE_BOOKING:
            # Moving a client's own time needs their consent.
            auto_resolvable = False
            if include_suggestions:
                resolutions = self.recommender.alternative_times(
                    first.therapist_id,
                    first.client_id,
                    first.start_time,
                    duration_minutes=first.duration_minutes,
                )
        elif conflict_type != RESOURCE_CONFLICT:
            raise SchedulingValidationError(f'Unknown conflict type: {conflict_type!r}.')

        return Conflict(
            conflict_id=str(uuid.uuid4()),
            conflict_type=conflict_type,
            first=first,
            second=second,
            suggested_resolutions=resolutions,
            auto_resolvable=auto_resolvable,
        )
