"""Resolution suggestions for conflicts and rejected bookings.

Two modes are offered. Alternate-time keeps the therapist/client pair and
searches the following week; alternate-therapist keeps the client and the
contested window and looks for another compatible, free therapist. Both
return an empty list when nothing clears the threshold.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from therapy_scheduler.core import config
from therapy_scheduler.scheduling.records import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_NO_SHOW,
    STATUS_SCHEDULED,
    AlternativeTime,
    ClientProfile,
    SessionRecord,
    TherapistAlternative,
    TherapistProfile,
)
from therapy_scheduler.scheduling.repository import SchedulingRepository
from therapy_scheduler.scheduling.slot_scorer import SlotScorer

logger = logging.getLogger(__name__)

SERVICE_MATCH_WEIGHT = 0.4
SPECIALTY_MATCH_WEIGHT = 0.3
DEFAULT_HISTORY_FACTOR = 0.2
MAX_HISTORY_BONUS = 0.1
HISTORY_LOOKBACK_DAYS = 365


def service_matches(therapist: TherapistProfile, client: ClientProfile) -> bool:
    if not client.service_preferences:
        return True
    return bool(therapist.service_types & client.service_preferences)


def historical_success_factor(history: list[SessionRecord]) -> float:
    """0.2 without shared history, rising to 0.3 with a perfect completion record."""
    finished = [
        session for session in history
        if session.status in (STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW)
    ]
    if not finished:
        return DEFAULT_HISTORY_FACTOR
    completed = sum(1 for session in finished if session.status == STATUS_COMPLETED)
    return DEFAULT_HISTORY_FACTOR + MAX_HISTORY_BONUS * (completed / len(finished))


def compatibility_score(therapist: TherapistProfile, client: ClientProfile, history: list[SessionRecord]) -> float:
    score = 0.0
    if service_matches(therapist, client):
        score += SERVICE_MATCH_WEIGHT
    if client.primary_diagnosis and client.primary_diagnosis in therapist.specialties:
        score += SPECIALTY_MATCH_WEIGHT
    score += historical_success_factor(history)
    return round(min(score, 1.0), 4)


class AlternativeRecommender:
    def __init__(self, repository: SchedulingRepository, scorer: SlotScorer):
        self.repository = repository
        self.scorer = scorer

    def alternative_times_for_session(self, session_id: int) -> list[AlternativeTime]:
        session = self.repository.get_session(session_id)
        return self.alternative_times(
            session.therapist_id,
            session.client_id,
            session.start_time,
            duration_minutes=session.duration_minutes,
        )

    def alternative_times(
        self,
        therapist_id: int,
        client_id: int,
        original_start: datetime,
        duration_minutes: int = config.DEFAULT_SESSION_MINUTES,
    ) -> list[AlternativeTime]:
        search_start = original_start.date()
        slots = self.scorer.find_optimal_slots(
            therapist_id,
            client_id,
            duration_minutes=duration_minutes,
            start_date=search_start,
            end_date=search_start + timedelta(days=config.SLOT_SEARCH_DAYS),
        )
        alternatives = [
            slot.as_alternative()
            for slot in slots
            if slot.score > config.ALTERNATIVE_TIME_MIN_SCORE
        ]
        return alternatives[:config.MAX_ALTERNATIVES]

    def alternative_therapists_for_session(self, session_id: int) -> list[TherapistAlternative]:
        session = self.repository.get_session(session_id)
        return self.alternative_therapists(
            session.client_id,
            session.start_time,
            session.end_time,
            exclude_therapist_id=session.therapist_id,
        )

    def alternative_therapists(
        self,
        client_id: int,
        start_time: datetime,
        end_time: datetime,
        exclude_therapist_id: Optional[int] = None,
    ) -> list[TherapistAlternative]:
        client = self.repository.get_client(client_id)
        pool = [
            therapist for therapist in self.repository.list_active_therapists()
            if therapist.id != exclude_therapist_id and service_matches(therapist, client)
        ]
        if not pool:
            return []

        busy = self.repository.list_overlapping_sessions(
            start_time,
            end_time,
            [STATUS_SCHEDULED],
            therapist_ids=[therapist.id for therapist in pool],
        )
        busy_ids = {session.therapist_id for session in busy}

        history = self.repository.list_sessions(
            start_time - timedelta(days=HISTORY_LOOKBACK_DAYS),
            start_time,
            [STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW],
            client_id=client.id,
        )

        duration_minutes = int((end_time - start_time).total_seconds() // 60)
        results: list[TherapistAlternative] = []
        for therapist in pool:
            if therapist.id in busy_ids:
                continue

            shared_history = [session for session in history if session.therapist_id == therapist.id]
            score = compatibility_score(therapist, client, shared_history)

            near_term = self.scorer.score_slots(
                therapist,
                client,
                duration_minutes=duration_minutes,
                start_date=start_time.date(),
                end_date=start_time.date() + timedelta(days=config.SLOT_SEARCH_DAYS),
                limit=config.THERAPIST_AVAILABILITY_SAMPLE,
            )
            results.append(
                TherapistAlternative(
                    therapist_id=therapist.id,
                    therapist_name=therapist.full_name,
                    compatibility_score=score,
                    alternative_times=[slot.as_alternative() for slot in near_term],
                )
            )

        results.sort(key=lambda alternative: (-alternative.compatibility_score, alternative.therapist_name))
        logger.debug('Found %s alternative therapists for client %s', len(results), client.id)
        return results[:config.MAX_ALTERNATIVES]
