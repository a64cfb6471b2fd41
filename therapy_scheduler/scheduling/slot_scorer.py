"""Candidate slot generation and multi-factor scoring.

A candidate is scored as a weighted sum of four factors, each normalised to
[0, 1] first:

* convenience (0.35): time-of-day desirability plus the weekday bonus
* workload balance (0.30): keeps the therapist moving towards, not past,
  the midpoint of their weekly target band
* client preference (0.20): similarity to the client's booking history
* scheduling efficiency (0.15): adjacency to the therapist's other sessions
  that day
"""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional

from therapy_scheduler.core import config
from therapy_scheduler.core.errors import SchedulingValidationError
from therapy_scheduler.scheduling.intervals import duration_hours, iterate_slot_starts, overlaps
from therapy_scheduler.scheduling.records import (
    OWNER_CLIENT,
    OWNER_THERAPIST,
    STATUS_COMPLETED,
    STATUS_SCHEDULED,
    AvailabilityWindow,
    ClientProfile,
    ScoredSlot,
    SessionRecord,
    TherapistProfile,
)
from therapy_scheduler.scheduling.repository import SchedulingRepository

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

CONVENIENCE_WEIGHT = 0.35
WORKLOAD_WEIGHT = 0.30
CLIENT_PREFERENCE_WEIGHT = 0.20
EFFICIENCY_WEIGHT = 0.15

CORE_HOURS = (9, 16)
EXTENDED_HOURS = (8, 17)
WEEKDAY_BONUS = 0.2
CLIENT_HISTORY_DAYS = 90
DRIVER_THRESHOLD = 0.7

FACTOR_REASONS = {
    'convenience': 'convenient weekday hours',
    'workload_balance': 'keeps the therapist within their weekly target',
    'client_preference': "matches the client's usual booking times",
    'scheduling_efficiency': "sits next to the therapist's other sessions",
}


def time_of_day_score(slot_start: datetime) -> float:
    hour = slot_start.hour
    if CORE_HOURS[0] <= hour <= CORE_HOURS[1]:
        return 0.8
    if EXTENDED_HOURS[0] <= hour <= EXTENDED_HOURS[1]:
        return 0.6
    return 0.3


def day_of_week_bonus(slot_start: datetime) -> float:
    return WEEKDAY_BONUS if slot_start.weekday() < 5 else 0.0


def week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def workload_balance_factor(therapist: TherapistProfile, booked_week_hours: float, slot_hours: float) -> float:
    target = therapist.workload_target.midpoint
    if target <= 0:
        return 0.5

    projected = booked_week_hours + slot_hours
    if projected <= target:
        return 1.0 - 0.5 * min(booked_week_hours / target, 1.0)
    if projected <= therapist.weekly_hours_max:
        return 0.3
    return 0.0


def client_preference_factor(history: list[SessionRecord], slot_start: datetime) -> float:
    if not history:
        return 0.5

    hour_score = 0.0
    weekday_matches = 0
    for session in history:
        hour_gap = abs(session.start_time.hour - slot_start.hour)
        if hour_gap == 0:
            hour_score += 1.0
        elif hour_gap == 1:
            hour_score += 0.5
        if session.start_time.weekday() == slot_start.weekday():
            weekday_matches += 1

    return 0.7 * (hour_score / len(history)) + 0.3 * (weekday_matches / len(history))


def scheduling_efficiency_factor(same_day_sessions: list[SessionRecord], slot_start: datetime, slot_end: datetime) -> float:
    if not same_day_sessions:
        return 0.5

    smallest_gap: Optional[float] = None
    for session in same_day_sessions:
        if session.end_time <= slot_start:
            gap = (slot_start - session.end_time).total_seconds() / 60
        elif session.start_time >= slot_end:
            gap = (session.start_time - slot_end).total_seconds() / 60
        else:
            continue
        if smallest_gap is None or gap < smallest_gap:
            smallest_gap = gap

    if smallest_gap is None:
        return 0.5
    if smallest_gap == 0:
        return 1.0
    if smallest_gap <= 30:
        return 0.8
    if smallest_gap <= 120:
        return 0.6
    return 0.3


def describe_drivers(factors: dict[str, float]) -> tuple[list[str], str]:
    drivers = [name for name, value in factors.items() if value >= DRIVER_THRESHOLD]
    if not drivers:
        return drivers, 'Open slot with no strong preference signals.'
    reasons = [FACTOR_REASONS[name] for name in drivers]
    sentence = '; '.join(reasons)
    return drivers, sentence[0].upper() + sentence[1:] + '.'


def fits_availability(windows: list[AvailabilityWindow], slot_start: datetime, slot_end: datetime) -> bool:
    # Owners without windows for that weekday fall back to business hours.
    same_day = [window for window in windows if window.day_of_week == slot_start.weekday()]
    if not same_day:
        return True
    return any(window.contains(slot_start, slot_end) for window in same_day)


class SlotScorer:
    def __init__(self, repository: SchedulingRepository, clock: Clock = datetime.now):
        self.repository = repository
        self.clock = clock

    def find_optimal_slots(
        self,
        therapist_id: int,
        client_id: int,
        duration_minutes: int = config.DEFAULT_SESSION_MINUTES,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        respect_availability: bool = False,
        limit: int = config.MAX_SCORED_SLOTS,
    ) -> list[ScoredSlot]:
        therapist = self.repository.get_therapist(therapist_id)
        client = self.repository.get_client(client_id)
        return self.score_slots(
            therapist,
            client,
            duration_minutes=duration_minutes,
            start_date=start_date,
            end_date=end_date,
            respect_availability=respect_availability,
            limit=limit,
        )

    def score_slots(
        self,
        therapist: TherapistProfile,
        client: ClientProfile,
        duration_minutes: int = config.DEFAULT_SESSION_MINUTES,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        respect_availability: bool = False,
        limit: int = config.MAX_SCORED_SLOTS,
    ) -> list[ScoredSlot]:
        if duration_minutes <= 0:
            raise SchedulingValidationError('Duration must be a positive number of minutes.')
        if limit <= 0:
            raise SchedulingValidationError('Limit must be positive.')

        now = self.clock()
        start_date = start_date or now.date()
        end_date = end_date or start_date + timedelta(days=config.SLOT_SEARCH_DAYS)
        if end_date < start_date:
            raise SchedulingValidationError('end_date must not be before start_date.')

        window_start = datetime.combine(start_date, time.min)
        window_end = datetime.combine(end_date + timedelta(days=1), time.min)

        busy_sessions = self.repository.list_overlapping_sessions(
            window_start,
            window_end,
            [STATUS_SCHEDULED],
            therapist_ids=[therapist.id],
            client_ids=[client.id],
        )
        therapist_sessions = self.repository.list_sessions(
            datetime.combine(week_start(start_date), time.min),
            datetime.combine(week_start(end_date) + timedelta(days=7), time.min),
            [STATUS_SCHEDULED, STATUS_COMPLETED],
            therapist_id=therapist.id,
        )
        client_history = self.repository.list_sessions(
            window_start - timedelta(days=CLIENT_HISTORY_DAYS),
            window_start,
            [STATUS_SCHEDULED, STATUS_COMPLETED],
            client_id=client.id,
        )

        therapist_windows: list[AvailabilityWindow] = []
        client_windows: list[AvailabilityWindow] = []
        if respect_availability:
            therapist_windows = self.repository.list_availability(OWNER_THERAPIST, therapist.id)
            client_windows = self.repository.list_availability(OWNER_CLIENT, client.id)

        week_hours: dict[date, float] = defaultdict(float)
        therapist_days: dict[date, list[SessionRecord]] = defaultdict(list)
        for session in therapist_sessions:
            week_hours[week_start(session.start_time.date())] += duration_hours(session.start_time, session.end_time)
            therapist_days[session.start_time.date()].append(session)

        client_days: dict[date, int] = defaultdict(int)
        for session in busy_sessions:
            if session.client_id == client.id:
                client_days[session.start_time.date()] += 1

        slot_hours = duration_minutes / 60
        scored: list[ScoredSlot] = []
        current_day = start_date

        while current_day <= end_date:
            day_close = datetime.combine(current_day, time(config.DAY_END_HOUR))
            candidates = iterate_slot_starts(
                datetime.combine(current_day, time(config.BUSINESS_DAY_START_HOUR)),
                datetime.combine(current_day, time(config.LAST_CANDIDATE_START_HOUR)),
                config.CANDIDATE_INCREMENT_MINUTES,
            )

            for slot_start in candidates:
                slot_end = slot_start + timedelta(minutes=duration_minutes)
                if slot_start <= now or slot_end > day_close:
                    continue
                if any(overlaps(slot_start, slot_end, s.start_time, s.end_time) for s in busy_sessions):
                    continue
                if respect_availability and not (
                    fits_availability(therapist_windows, slot_start, slot_end)
                    and fits_availability(client_windows, slot_start, slot_end)
                ):
                    continue

                booked = week_hours[week_start(current_day)]
                factors = {
                    'convenience': min(time_of_day_score(slot_start) + day_of_week_bonus(slot_start), 1.0),
                    'workload_balance': workload_balance_factor(therapist, booked, slot_hours),
                    'client_preference': client_preference_factor(client_history, slot_start),
                    'scheduling_efficiency': scheduling_efficiency_factor(
                        therapist_days[current_day], slot_start, slot_end
                    ),
                }
                score = (
                    CONVENIENCE_WEIGHT * factors['convenience']
                    + WORKLOAD_WEIGHT * factors['workload_balance']
                    + CLIENT_PREFERENCE_WEIGHT * factors['client_preference']
                    + EFFICIENCY_WEIGHT * factors['scheduling_efficiency']
                )
                score = round(max(0.0, min(score, 1.0)), 4)
                if score <= config.SLOT_SCORE_FLOOR:
                    continue

                drivers, reason = describe_drivers(factors)
                scored.append(
                    ScoredSlot(
                        start_time=slot_start,
                        end_time=slot_end,
                        score=score,
                        reason=reason,
                        reasoning={
                            'time_of_day': time_of_day_score(slot_start),
                            'day_of_week': day_of_week_bonus(slot_start),
                            **{name: round(value, 4) for name, value in factors.items()},
                            'drivers': drivers,
                        },
                        availability={
                            'therapist_sessions_that_day': len(therapist_days[current_day]),
                            'client_sessions_that_day': client_days[current_day],
                            'therapist_week_hours': round(booked, 2),
                            'therapist_target_hours': therapist.workload_target.midpoint,
                        },
                    )
                )

            current_day += timedelta(days=1)

        scored.sort(key=lambda slot: (-slot.score, slot.start_time))
        logger.debug(
            'Scored %s candidate slots for therapist %s and client %s',
            len(scored),
            therapist.id,
            client.id,
        )
        return scored[:limit]
