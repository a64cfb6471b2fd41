from datetime import datetime, time

import pytest

from therapy_scheduler.core.errors import SchedulingValidationError
from therapy_scheduler.database import backfill_availability_grid
from therapy_scheduler.models.availability import AvailabilityWindowRow
from therapy_scheduler.scheduling.intervals import (
    is_grid_aligned,
    iterate_slot_starts,
    overlaps,
    require_grid_aligned,
    round_to_grid,
)
from therapy_scheduler.scheduling.records import AvailabilityWindow, SessionRecord


@pytest.mark.parametrize(
    ('first', 'second', 'expected'),
    [
        ((datetime(2026, 1, 5, 10, 0), datetime(2026, 1, 5, 11, 0)), (datetime(2026, 1, 5, 10, 30), datetime(2026, 1, 5, 11, 30)), True),
        ((datetime(2026, 1, 5, 10, 0), datetime(2026, 1, 5, 11, 0)), (datetime(2026, 1, 5, 11, 0), datetime(2026, 1, 5, 12, 0)), False),
        ((datetime(2026, 1, 5, 9, 0), datetime(2026, 1, 5, 12, 0)), (datetime(2026, 1, 5, 10, 0), datetime(2026, 1, 5, 10, 15)), True),
        ((datetime(2026, 1, 5, 9, 0), datetime(2026, 1, 5, 9, 15)), (datetime(2026, 1, 6, 9, 0), datetime(2026, 1, 6, 9, 15)), False),
    ],
)
def test_overlaps_is_symmetric(first, second, expected: bool) -> None:
    assert overlaps(*first, *second) is expected
    assert overlaps(*second, *first) is expected


@pytest.mark.parametrize(
    ('time_of_day', 'expected'),
    [
        (time(9, 0), True),
        (time(9, 45), True),
        (time(9, 10), False),
        (time(9, 15, 30), False),
    ],
)
def test_is_grid_aligned(time_of_day: time, expected: bool) -> None:
    assert is_grid_aligned(time_of_day) is expected


def test_require_grid_aligned_names_the_field() -> None:
    with pytest.raises(SchedulingValidationError) as exception_info:
        require_grid_aligned(time(10, 7), 'start_time')

    assert str(exception_info.value) == 'start_time must be on a 15-minute boundary (got 10:07:00).'


@pytest.mark.parametrize(
    ('raw', 'rounded'),
    [
        (time(9, 7), time(9, 0)),
        (time(9, 8), time(9, 15)),
        (time(10, 53), time(11, 0)),
        (time(23, 55), time(23, 45)),
    ],
)
def test_round_to_grid(raw: time, rounded: time) -> None:
    assert round_to_grid(raw) == rounded


def test_iterate_slot_starts_rounds_up_to_next_increment() -> None:
    slots = iterate_slot_starts(datetime(2026, 1, 5, 8, 10), datetime(2026, 1, 5, 9, 30), 30)

    assert slots == [
        datetime(2026, 1, 5, 8, 30),
        datetime(2026, 1, 5, 9, 0),
        datetime(2026, 1, 5, 9, 30),
    ]


def test_availability_window_rejects_off_grid_times() -> None:
    with pytest.raises(SchedulingValidationError):
        AvailabilityWindow('therapist', 1, 0, time(9, 10), time(10, 0))


def test_availability_window_rejects_inverted_range() -> None:
    with pytest.raises(SchedulingValidationError):
        AvailabilityWindow('therapist', 1, 0, time(10, 0), time(10, 0))


def test_availability_window_contains_only_its_weekday() -> None:
    window = AvailabilityWindow('client', 1, 0, time(9, 0), time(12, 0))

    assert window.contains(datetime(2026, 1, 5, 9, 0), datetime(2026, 1, 5, 10, 0))
    assert not window.contains(datetime(2026, 1, 5, 11, 30), datetime(2026, 1, 5, 12, 30))
    assert not window.contains(datetime(2026, 1, 6, 9, 0), datetime(2026, 1, 6, 10, 0))


def test_session_record_requires_end_after_start() -> None:
    with pytest.raises(SchedulingValidationError):
        SessionRecord(1, 1, 1, datetime(2026, 1, 5, 10, 0), datetime(2026, 1, 5, 10, 0))


def test_session_record_rejects_unknown_status() -> None:
    with pytest.raises(SchedulingValidationError):
        SessionRecord(1, 1, 1, datetime(2026, 1, 5, 10, 0), datetime(2026, 1, 5, 11, 0), status='pending')


def test_backfill_availability_grid_rounds_legacy_rows(db) -> None:
    legacy = AvailabilityWindowRow(
        owner_type='therapist',
        owner_id=1,
        day_of_week=0,
        start_time=time(9, 7),
        end_time=time(10, 53),
    )
    aligned = AvailabilityWindowRow(
        owner_type='therapist',
        owner_id=1,
        day_of_week=1,
        start_time=time(9, 0),
        end_time=time(12, 0),
    )
    db.add_all([legacy, aligned])
    db.commit()

    changed = backfill_availability_grid(db)
    db.expire_all()

    assert changed == 1
    assert (legacy.start_time, legacy.end_time) == (time(9, 0), time(11, 0))
    assert (aligned.start_time, aligned.end_time) == (time(9, 0), time(12, 0))


def test_backfill_availability_grid_leaves_collapsing_rows(db) -> None:
    narrow = AvailabilityWindowRow(
        owner_type='client',
        owner_id=2,
        day_of_week=2,
        start_time=time(9, 1),
        end_time=time(9, 4),
    )
    db.add(narrow)
    db.commit()

    assert backfill_availability_grid(db) == 0
    db.expire_all()
    assert (narrow.start_time, narrow.end_time) == (time(9, 1), time(9, 4))
