import logging
from collections import defaultdict
from datetime import datetime, time, timedelta
from typing import Callable, Optional

from therapy_scheduler.core import config
from therapy_scheduler.core.errors import SchedulingValidationError
from therapy_scheduler.scheduling.intervals import duration_hours
from therapy_scheduler.scheduling.records import (
    STATUS_COMPLETED,
    STATUS_SCHEDULED,
    Recommendation,
    SessionRecord,
    TherapistProfile,
    WorkloadReport,
)
from therapy_scheduler.scheduling.repository import SchedulingRepository

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')


def weekly_equivalent_hours(total_hours: float, window_days: int) -> float:
    return total_hours * (7 / window_days)


def utilization_rate(total_hours: float, window_days: int, target_hours: float) -> Optional[float]:
    if target_hours <= 0:
        return None
    return round(weekly_equivalent_hours(total_hours, window_days) / target_hours * 100, 2)


def efficiency_score(total_hours: float, session_count: int) -> float:
    if session_count == 0:
        return 0.0
    average = total_hours / session_count
    return round(min(average / config.BASELINE_SESSION_HOURS, 1.0) * 100, 2)


def build_recommendations(
    rate: Optional[float],
    weekly_hours: float,
    target_hours: float,
    total_hours: float,
    session_count: int,
) -> list[Recommendation]:
    """Every rule that fires contributes a recommendation."""
    recommendations: list[Recommendation] = []

    if rate is not None and rate < config.UNDERUTILIZATION_THRESHOLD:
        recommendations.append(
            Recommendation(
                type='increase_utilization',
                priority='high',
                message=(
                    f'Utilization at {rate:.1f}%. '
                    f'Consider adding {round(target_hours - weekly_hours, 1)} hours/week'
                ),
                action='schedule_more_sessions',
            )
        )

    if rate is not None and rate > config.OVERLOAD_THRESHOLD:
        recommendations.append(
            Recommendation(
                type='reduce_overload',
                priority='critical',
                message=(
                    f'Overutilized at {rate:.1f}%. '
                    f'Consider reducing {round(weekly_hours - target_hours, 1)} hours/week'
                ),
                action='redistribute_sessions',
            )
        )

    if session_count and total_hours / session_count < config.SHORT_SESSION_RATIO * config.BASELINE_SESSION_HOURS:
        recommendations.append(
            Recommendation(
                type='optimize_scheduling',
                priority='medium',
                message='Many short sessions detected. Consider grouping sessions for efficiency',
                action='optimize_session_blocks',
            )
        )

    return recommendations


class WorkloadAnalyzer:
    def __init__(self, repository: SchedulingRepository, clock: Callable[[], datetime] = datetime.now):
        self.repository = repository
        self.clock = clock

    def analyze(
        self,
        therapist_id: Optional[int] = None,
        window_days: int = config.WORKLOAD_ANALYSIS_DAYS,
    ) -> list[WorkloadReport]:
        if window_days <= 0:
            raise SchedulingValidationError('Analysis window must be at least one day.')

        if therapist_id is not None:
            therapist = self.repository.get_therapist(therapist_id)
            therapists = [therapist] if therapist.is_active else []
        else:
            therapists = self.repository.list_active_therapists()
        if not therapists:
            return []

        today = self.clock().date()
        sessions = self.repository.list_sessions(
            datetime.combine(today - timedelta(days=window_days), time.min),
            datetime.combine(today + timedelta(days=1), time.min),
            [STATUS_SCHEDULED, STATUS_COMPLETED],
            therapist_id=therapist_id,
        )
        by_therapist: dict[int, list[SessionRecord]] = defaultdict(list)
        for session in sessions:
            by_therapist[session.therapist_id].append(session)

        reports = [
            self._report(therapist, by_therapist[therapist.id], window_days)
            for therapist in therapists
        ]
        logger.info('Analyzed workload for %s therapists over %s days', len(reports), window_days)
        return reports

    def _report(self, therapist: TherapistProfile, sessions: list[SessionRecord], window_days: int) -> WorkloadReport:
        total_hours = sum(duration_hours(s.start_time, s.end_time) for s in sessions)
        target_hours = therapist.workload_target.midpoint
        rate = utilization_rate(total_hours, window_days, target_hours)

        distribution: dict[str, int] = defaultdict(int)
        for session in sessions:
            distribution[WEEKDAY_NAMES[session.start_time.weekday()]] += 1

        return WorkloadReport(
            therapist_id=therapist.id,
            therapist_name=therapist.full_name,
            utilization_rate=rate,
            total_hours=round(total_hours, 2),
            target_hours=target_hours,
            efficiency_score=efficiency_score(total_hours, len(sessions)),
            session_count=len(sessions),
            recommendations=build_recommendations(
                rate,
                weekly_equivalent_hours(total_hours, window_days),
                target_hours,
                total_hours,
                len(sessions),
            ),
            workload_distribution=dict(distribution),
        )
