from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple

from ..core.exceptions import (
    DuplicateResponse,
    NotFound,
    PoolNotReady,
    SessionConflict,
    ValidationError,
)
from ..models import Assessment, Candidate, Question, Response
from ..models.constants import LIKERT_OPTION_LABELS, OBJECTIVE_LABELS
from .integrity import DevicePolicy
from .locks import CandidateLocks, candidate_locks
from .scoring import ScoringFinalizer
from .session_state import (
    CompletionReason,
    InProgress,
    SessionState,
    clamp_elapsed,
    derive_state,
    elapsed_seconds,
)

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StartedSession:
    assessment: Assessment
    candidate: Candidate
    questions: List[Question]
    state: InProgress


class SessionEngine:
    """
    Assignment and question-by-question progression for candidate sessions.

    A response is stored before the cursor moves, so the number of responses always
    equals the number of questions presented. When the response write fails the
    cursor stays put and the same call can be retried.
    """

    def __init__(
        self,
        repository: Any,
        finalizer: ScoringFinalizer,
        device_policy: Optional[DevicePolicy] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _now_utc,
        locks: CandidateLocks = candidate_locks,
        assignment_size: int = 20,
        period_seconds: int = 40,
        grace_seconds: int = 2,
    ) -> None:
        self.repository = repository
        self.finalizer = finalizer
        self.device_policy = device_policy or DevicePolicy()
        self.rng = rng or random.Random()
        self.clock = clock
        self.locks = locks
        self.assignment_size = assignment_size
        self.period_seconds = period_seconds
        self.grace_seconds = grace_seconds

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_assessment_by_token(self, share_token: str) -> Assessment:
        assessment = await self.repository.get_assessment_by_token(share_token)
        if assessment is None:
            raise NotFound("Assessment not found. The link is invalid or no longer available.")
        return assessment

    async def get_candidate(self, share_token: str, candidate_id: str) -> Tuple[Assessment, Candidate]:
        assessment = await self.get_assessment_by_token(share_token)
        candidate = await self.repository.get_candidate(candidate_id)
        if candidate is None or candidate.assessmentId != assessment.id:
            raise NotFound("Session not found")
        return assessment, candidate

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start_session(
        self,
        share_token: str,
        full_name: str,
        email: str,
        form_factor: Optional[str] = None,
    ) -> StartedSession:
        full_name = (full_name or "").strip()
        email = (email or "").strip().lower()
        if not full_name or not email:
            raise ValidationError("Full name and email are required")
        if "@" not in email:
            raise ValidationError("Please enter a valid email address")

        self.device_policy.ensure_allowed(form_factor)

        assessment = await self.get_assessment_by_token(share_token)
        now = self.clock()
        if assessment.is_expired(now):
            raise NotFound("This assessment has expired")

        pool = await self.repository.list_questions(assessment.id)
        if not pool:
            raise PoolNotReady("The assessment is still being prepared. Please try again in a moment.")

        # Unbiased random subset, already in random order
        assigned = self.rng.sample(pool, k=min(self.assignment_size, len(pool)))
        candidate = Candidate(
            assessmentId=assessment.id,
            fullName=full_name,
            email=email,
            assignedQuestionIds=[question.id for question in assigned],
            startedAt=now,
            questionStartedAt=now,
            formFactor=form_factor,
            createdAt=now,
        )
        await self.repository.create_candidate(candidate)
        logger.info(
            f"[Session] Candidate {candidate.id} started assessment {assessment.id} "
            f"with {len(assigned)}/{len(pool)} questions"
        )

        state = InProgress(
            cursor=0,
            remaining=self.period_seconds,
            total=len(assigned),
            question_id=assigned[0].id,
        )
        return StartedSession(assessment=assessment, candidate=candidate, questions=assigned, state=state)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    async def get_state(self, candidate: Candidate) -> SessionState:
        if not candidate.is_completed and candidate.currentIndex >= len(candidate.assignedQuestionIds):
            # Every answer is stored but the completion write did not go through
            return await self.finalizer.finalize(candidate.id, CompletionReason.NATURAL)
        answered = len(await self.repository.list_responses(candidate.id)) if candidate.is_completed else 0
        return derive_state(candidate, self.clock(), self.period_seconds, answered=answered)

    async def current_question(self, candidate: Candidate) -> Optional[Question]:
        if candidate.is_completed or candidate.currentIndex >= len(candidate.assignedQuestionIds):
            return None
        question_id = candidate.assignedQuestionIds[candidate.currentIndex]
        questions = await self.repository.get_questions_by_ids([question_id])
        return questions[0] if questions else None

    # ------------------------------------------------------------------
    # Progression
    # ------------------------------------------------------------------

    async def submit_answer(
        self,
        candidate_id: str,
        question_id: str,
        answer: str,
        remaining: Optional[int] = None,
    ) -> SessionState:
        """Answer the current question. ``remaining`` comes from a live countdown when there is one."""
        label = (answer or "").strip().upper()
        return await self._record_and_advance(candidate_id, question_id, label, remaining)

    async def expire_question(self, candidate_id: str, question_id: str) -> SessionState:
        """The countdown for the current question reached zero."""
        return await self._record_and_advance(candidate_id, question_id, None, 0)

    async def _record_and_advance(
        self,
        candidate_id: str,
        question_id: str,
        label: Optional[str],
        remaining: Optional[int],
    ) -> SessionState:
        async with self.locks.get(candidate_id):
            candidate = await self.repository.get_candidate(candidate_id)
            if candidate is None:
                raise NotFound("Session not found")
            if candidate.is_completed:
                raise SessionConflict("This assessment has already been completed")

            total = len(candidate.assignedQuestionIds)
            cursor = candidate.currentIndex
            if cursor >= total:
                return await self.finalizer.finalize(candidate_id, CompletionReason.NATURAL)

            current_id = candidate.assignedQuestionIds[cursor]
            if question_id != current_id:
                raise SessionConflict("This question is no longer active")

            questions = await self.repository.get_questions_by_ids([current_id])
            if not questions:
                raise NotFound("Question not found")
            question = questions[0]

            now = self.clock()
            if remaining is not None:
                elapsed = self.period_seconds - remaining
            else:
                elapsed = elapsed_seconds(candidate.questionStartedAt, now)
            timed_out = label is None or elapsed > self.period_seconds + self.grace_seconds

            if not timed_out:
                allowed = LIKERT_OPTION_LABELS if question.is_likert else OBJECTIVE_LABELS
                if label not in allowed:
                    raise ValidationError(f"Answer must be one of {', '.join(allowed)}")

            response = Response(
                candidateId=candidate_id,
                questionId=current_id,
                selectedAnswer=None if timed_out else label,
                isCorrect=not timed_out and not question.is_likert and label == question.correctAnswer,
                timeTakenSeconds=self.period_seconds if timed_out else clamp_elapsed(elapsed, self.period_seconds),
                timedOut=timed_out,
                answeredAt=now,
            )
            try:
                await self.repository.insert_response(response)
            except DuplicateResponse:
                # Stored by an earlier attempt whose cursor update failed
                logger.info(f"[Session] Response for candidate {candidate_id} question {current_id} already stored")

            if not await self.repository.advance_candidate(candidate_id, cursor, now):
                # Another worker moved the cursor or completed the session since our read
                logger.warning(f"[Session] Stale answer for candidate {candidate_id} question {current_id}")
                raise SessionConflict("This question is no longer active")

            if cursor + 1 >= total:
                return await self.finalizer.finalize(candidate_id, CompletionReason.NATURAL)

            return InProgress(
                cursor=cursor + 1,
                remaining=self.period_seconds,
                total=total,
                question_id=candidate.assignedQuestionIds[cursor + 1],
            )
