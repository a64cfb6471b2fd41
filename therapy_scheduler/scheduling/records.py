"""Typed records passed between the repository and the scheduling services."""

from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Any, Optional

from therapy_scheduler.core.errors import SchedulingValidationError
from therapy_scheduler.scheduling.intervals import require_grid_aligned, require_ordered

STATUS_SCHEDULED = 'scheduled'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'
STATUS_NO_SHOW = 'no-show'
SESSION_STATUSES = frozenset({STATUS_SCHEDULED, STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW})

THERAPIST_DOUBLE_BOOKING = 'therapist_double_booking'
CLIENT_DOUBLE_BOOKING = 'client_double_booking'
RESOURCE_CONFLICT = 'resource_conflict'
CONFLICT_SEVERITY = {
    THERAPIST_DOUBLE_BOOKING: 3,
    CLIENT_DOUBLE_BOOKING: 2,
    RESOURCE_CONFLICT: 1,
}

OWNER_THERAPIST = 'therapist'
OWNER_CLIENT = 'client'


@dataclass(frozen=True)
class SessionRecord:
    id: int
    client_id: int
    therapist_id: int
    start_time: datetime
    end_time: datetime
    status: str = STATUS_SCHEDULED
    notes: Optional[str] = None

    def __post_init__(self):
        require_ordered(self.start_time, self.end_time, 'Session')
        if self.status not in SESSION_STATUSES:
            raise SchedulingValidationError(f'Unknown session status: {self.status!r}.')

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)


@dataclass(frozen=True)
class WorkloadTarget:
    therapist_id: int
    weekly_hours_min: float
    weekly_hours_max: float

    @property
    def midpoint(self) -> float:
        return (self.weekly_hours_min + self.weekly_hours_max) / 2.0


@dataclass(frozen=True)
class TherapistProfile:
    id: int
    full_name: str
    status: str = 'active'
    service_types: frozenset[str] = frozenset()
    specialties: frozenset[str] = frozenset()
    weekly_hours_min: float = 0.0
    weekly_hours_max: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.status == 'active'

    @property
    def workload_target(self) -> WorkloadTarget:
        return WorkloadTarget(self.id, self.weekly_hours_min, self.weekly_hours_max)


@dataclass(frozen=True)
class ClientProfile:
    id: int
    full_name: str
    status: str = 'active'
    service_preferences: frozenset[str] = frozenset()
    primary_diagnosis: Optional[str] = None


@dataclass(frozen=True)
class AvailabilityWindow:
    """A recurring weekly window; day_of_week follows ``date.weekday()``."""

    owner_type: str
    owner_id: int
    day_of_week: int
    start_time: time
    end_time: time

    def __post_init__(self):
        if self.owner_type not in (OWNER_THERAPIST, OWNER_CLIENT):
            raise SchedulingValidationError(f'Unknown availability owner type: {self.owner_type!r}.')
        if not 0 <= self.day_of_week <= 6:
            raise SchedulingValidationError('day_of_week must be between 0 (Monday) and 6 (Sunday).')
        require_grid_aligned(self.start_time, 'start_time')
        require_grid_aligned(self.end_time, 'end_time')
        require_ordered(self.start_time, self.end_time, 'Availability window')

    def contains(self, start: datetime, end: datetime) -> bool:
        if start.weekday() != self.day_of_week or end.date() != start.date():
            return False
        return self.start_time <= start.time() and end.time() <= self.end_time


@dataclass(frozen=True)
class AlternativeTime:
    start_time: datetime
    end_time: datetime
    score: float
    reason: str


@dataclass(frozen=True)
class ScoredSlot:
    start_time: datetime
    end_time: datetime
    score: float
    reason: str
    reasoning: dict[str, Any] = field(default_factory=dict)
    availability: dict[str, Any] = field(default_factory=dict)

    def as_alternative(self) -> AlternativeTime:
        return AlternativeTime(self.start_time, self.end_time, self.score, self.reason)


@dataclass(frozen=True)
class TherapistAlternative:
    therapist_id: int
    therapist_name: str
    compatibility_score: float
    alternative_times: list[AlternativeTime] = field(default_factory=list)


@dataclass(frozen=True)
class Conflict:
    conflict_id: str
    conflict_type: str
    first: SessionRecord
    second: SessionRecord
    suggested_resolutions: list = field(default_factory=list)
    auto_resolvable: bool = True

    @property
    def severity(self) -> int:
        return CONFLICT_SEVERITY[self.conflict_type]

    @property
    def affected_sessions(self) -> list[int]:
        return [self.first.id, self.second.id]


@dataclass(frozen=True)
class Recommendation:
    type: str
    priority: str
    message: str
    action: str


@dataclass(frozen=True)
class WorkloadReport:
    therapist_id: int
    therapist_name: str
    utilization_rate: Optional[float]
    total_hours: float
    target_hours: float
    efficiency_score: float
    session_count: int
    recommendations: list[Recommendation] = field(default_factory=list)
    workload_distribution: dict[str, int] = field(default_factory=dict)
