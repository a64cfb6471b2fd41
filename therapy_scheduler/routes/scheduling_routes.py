from datetime import date, datetime
from typing import Any, Callable

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.orm import Session

from therapy_scheduler.core import config
from therapy_scheduler.database import get_db
from therapy_scheduler.routes.common import ensure_database_ready, get_clock, translate_errors
from therapy_scheduler.scheduling.alternatives import AlternativeRecommender
from therapy_scheduler.scheduling.conflict_detector import ConflictDetector
from therapy_scheduler.scheduling.records import (
    AlternativeTime,
    Conflict,
    ScoredSlot,
    TherapistAlternative,
    WorkloadReport,
)
from therapy_scheduler.scheduling.repository import SqlAlchemySchedulingRepository
from therapy_scheduler.scheduling.slot_scorer import SlotScorer
from therapy_scheduler.scheduling.workload import WorkloadAnalyzer

router = APIRouter(tags=['scheduling'])

MAX_SESSION_MINUTES = 480
MAX_WORKLOAD_WINDOW_DAYS = 365


class AlternativeTimeResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    score: float
    reason: str

    class Config:
        from_attributes = True


class TherapistAlternativeResponse(BaseModel):
    therapist_id: int
    therapist_name: str
    compatibility_score: float
    alternative_times: list[AlternativeTimeResponse]


class ConflictResponse(BaseModel):
    conflict_id: str
    conflict_type: str
    severity: int
    affected_sessions: list[int]
    suggested_resolutions: list[TherapistAlternativeResponse | AlternativeTimeResponse]
    auto_resolvable: bool


class ScoredSlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    score: float
    reason: str
    reasoning: dict[str, Any]
    availability: dict[str, Any]

    class Config:
        from_attributes = True


class OptimalSlotsRequest(BaseModel):
    therapist_id: int
    client_id: int
    duration_minutes: int = config.DEFAULT_SESSION_MINUTES
    start_date: date | None = None
    end_date: date | None = None
    respect_availability: bool = False

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        if value <= 0 or value > MAX_SESSION_MINUTES:
            raise ValueError(f'Duration must be between 1 and {MAX_SESSION_MINUTES} minutes.')
        return value

    @model_validator(mode='after')
    def validate_date_range(self) -> 'OptimalSlotsRequest':
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError('end_date must not be before start_date.')
        return self


class RecommendationResponse(BaseModel):
    type: str
    priority: str
    message: str
    action: str

    class Config:
        from_attributes = True


class WorkloadReportResponse(BaseModel):
    therapist_id: int
    therapist_name: str
    utilization_rate: float | None
    total_hours: float
    target_hours: float
    efficiency_score: float
    session_count: int
    recommendations: list[RecommendationResponse]
    workload_distribution: dict[str, int]


def build_scorer(db: Session, clock: Callable[[], datetime]) -> tuple[SqlAlchemySchedulingRepository, SlotScorer]:
    repository = SqlAlchemySchedulingRepository(db)
    return repository, SlotScorer(repository, clock)


def serialize_alternative(alternative: AlternativeTime) -> AlternativeTimeResponse:
    return AlternativeTimeResponse.model_validate(alternative)


def serialize_therapist_alternative(alternative: TherapistAlternative) -> TherapistAlternativeResponse:
    return TherapistAlternativeResponse(
        therapist_id=alternative.therapist_id,
        therapist_name=alternative.therapist_name,
        compatibility_score=alternative.compatibility_score,
        alternative_times=[serialize_alternative(time_slot) for time_slot in alternative.alternative_times],
    )


def serialize_resolution(resolution) -> TherapistAlternativeResponse | AlternativeTimeResponse:
    if isinstance(resolution, TherapistAlternative):
        return serialize_therapist_alternative(resolution)
    return serialize_alternative(resolution)


def serialize_conflict(conflict: Conflict) -> ConflictResponse:
    return ConflictResponse(
        conflict_id=conflict.conflict_id,
        conflict_type=conflict.conflict_type,
        severity=conflict.severity,
        affected_sessions=conflict.affected_sessions,
        suggested_resolutions=[serialize_resolution(resolution) for resolution in conflict.suggested_resolutions],
        auto_resolvable=conflict.auto_resolvable,
    )


def serialize_slot(slot: ScoredSlot) -> ScoredSlotResponse:
    return ScoredSlotResponse.model_validate(slot)


def serialize_workload(report: WorkloadReport) -> WorkloadReportResponse:
    return WorkloadReportResponse(
        therapist_id=report.therapist_id,
        therapist_name=report.therapist_name,
        utilization_rate=report.utilization_rate,
        total_hours=report.total_hours,
        target_hours=report.target_hours,
        efficiency_score=report.efficiency_score,
        session_count=report.session_count,
        recommendations=[RecommendationResponse.model_validate(item) for item in report.recommendations],
        workload_distribution=report.workload_distribution,
    )


@router.get('/conflicts', response_model=list[ConflictResponse])
def list_conflicts(
    start_date: date = Query(...),
    end_date: date = Query(...),
    include_suggestions: bool = Query(default=False),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with translate_errors():
        repository, scorer = build_scorer(db, clock)
        detector = ConflictDetector(repository, AlternativeRecommender(repository, scorer))
        conflicts = detector.detect(start_date, end_date, include_suggestions=include_suggestions)
        return [serialize_conflict(conflict) for conflict in conflicts]


@router.post('/slots/optimal', response_model=list[ScoredSlotResponse])
def find_optimal_slots(
    data: OptimalSlotsRequest,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with translate_errors():
        _, scorer = build_scorer(db, clock)
        slots = scorer.find_optimal_slots(
            data.therapist_id,
            data.client_id,
            duration_minutes=data.duration_minutes,
            start_date=data.start_date,
            end_date=data.end_date,
            respect_availability=data.respect_availability,
        )
        return [serialize_slot(slot) for slot in slots]


@router.get('/sessions/{session_id}/alternative-times', response_model=list[AlternativeTimeResponse])
def list_alternative_times(
    session_id: int,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with translate_errors():
        repository, scorer = build_scorer(db, clock)
        alternatives = AlternativeRecommender(repository, scorer).alternative_times_for_session(session_id)
        return [serialize_alternative(alternative) for alternative in alternatives]


@router.get('/sessions/{session_id}/alternative-therapists', response_model=list[TherapistAlternativeResponse])
def list_alternative_therapists(
    session_id: int,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with translate_errors():
        repository, scorer = build_scorer(db, clock)
        alternatives = AlternativeRecommender(repository, scorer).alternative_therapists_for_session(session_id)
        return [serialize_therapist_alternative(alternative) for alternative in alternatives]


@router.get('/workload', response_model=list[WorkloadReportResponse])
def analyze_workload(
    therapist_id: int | None = Query(default=None),
    days: int = Query(default=config.WORKLOAD_ANALYSIS_DAYS, ge=1, le=MAX_WORKLOAD_WINDOW_DAYS),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    with translate_errors():
        analyzer = WorkloadAnalyzer(SqlAlchemySchedulingRepository(db), clock)
        return [serialize_workload(report) for report in analyzer.analyze(therapist_id, window_days=days)]
