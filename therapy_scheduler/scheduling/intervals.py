"""Time-range helpers shared by every scheduling service."""

from datetime import datetime, time, timedelta

from therapy_scheduler.core.errors import SchedulingValidationError

GRID_MINUTES = 15
GRID_ALIGNED_MINUTES = frozenset({0, 15, 30, 45})
_LAST_GRID_MINUTE_OF_DAY = 23 * 60 + 45


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap test; touching endpoints do not conflict."""
    return a_start < b_end and a_end > b_start


def is_grid_aligned(time_of_day: time) -> bool:
    return (
        time_of_day.minute in GRID_ALIGNED_MINUTES
        and time_of_day.second == 0
        and time_of_day.microsecond == 0
    )


def require_grid_aligned(time_of_day: time, field_name: str = 'time') -> time:
    if not is_grid_aligned(time_of_day):
        raise SchedulingValidationError(
            f'{field_name} must be on a 15-minute boundary (got {time_of_day.strftime("%H:%M:%S")}).'
        )
    return time_of_day


def require_ordered(start, end, field_name: str = 'range') -> None:
    if end <= start:
        raise SchedulingValidationError(f'{field_name} must end after it starts.')


def round_to_grid(time_of_day: time) -> time:
    # Backfill only; regular input is rejected by require_grid_aligned.
    total_seconds = time_of_day.hour * 3600 + time_of_day.minute * 60 + time_of_day.second
    grid_seconds = GRID_MINUTES * 60
    rounded_minutes = ((total_seconds + grid_seconds // 2) // grid_seconds) * GRID_MINUTES
    rounded_minutes = min(rounded_minutes, _LAST_GRID_MINUTE_OF_DAY)
    return time(rounded_minutes // 60, rounded_minutes % 60)


def iterate_slot_starts(start_time: datetime, end_time: datetime, increment_minutes: int) -> list[datetime]:
    """Grid-aligned starts in ``[start_time, end_time]``, rounding the first one up."""
    slots: list[datetime] = []
    current = start_time.replace(second=0, microsecond=0)

    if current < start_time:
        current += timedelta(minutes=1)

    minutes_into_day = current.hour * 60 + current.minute
    if minutes_into_day % increment_minutes != 0:
        current += timedelta(minutes=increment_minutes - (minutes_into_day % increment_minutes))

    while current <= end_time:
        slots.append(current)
        current += timedelta(minutes=increment_minutes)

    return slots


def duration_hours(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600
