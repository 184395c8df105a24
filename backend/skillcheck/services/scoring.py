from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Coroutine, Optional

from ..core.exceptions import NotFound
from ..models import Candidate
from .background import fire_and_forget
from .notifications import NotificationSink, candidate_completed_payload
from .session_state import Completed, CompletionReason

logger = logging.getLogger(__name__)

Scheduler = Callable[[Coroutine[Any, Any, Any]], Any]
Analyzer = Callable[[str], Awaitable[Any]]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class ScoringFinalizer:
    """
    Writes the one and only result of a session.

    Objective pools are scored by counting the correctness flags stored with each
    response. Likert pools get a null score and a background personality analysis.
    Completion is a conditional write, so a second finalize (natural completion racing
    a visibility loss) leaves the first result untouched.
    """

    def __init__(
        self,
        repository: Any,
        analyzer: Optional[Analyzer] = None,
        notifier: Optional[NotificationSink] = None,
        scheduler: Scheduler = fire_and_forget,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self.repository = repository
        self.analyzer = analyzer
        self.notifier = notifier
        self.scheduler = scheduler
        self.clock = clock

    async def completed_state(self, candidate: Candidate) -> Completed:
        responses = await self.repository.list_responses(candidate.id)
        return Completed(
            reason=candidate.completionReason or CompletionReason.NATURAL.value,
            score=candidate.totalScore,
            total=len(candidate.assignedQuestionIds),
            answered=len(responses),
        )

    async def finalize(self, candidate_id: str, reason: CompletionReason) -> Completed:
        candidate = await self.repository.get_candidate(candidate_id)
        if candidate is None:
            raise NotFound("Candidate not found")
        if candidate.is_completed:
            logger.info(f"[Finalizer] Candidate {candidate_id} already completed ({candidate.completionReason})")
            return await self.completed_state(candidate)

        responses = await self.repository.list_responses(candidate_id)
        questions = await self.repository.get_questions_by_ids(candidate.assignedQuestionIds)
        likert = any(question.is_likert for question in questions)
        score = None if likert else sum(1 for response in responses if response.isCorrect)

        completed_at = self.clock()
        won = await self.repository.complete_candidate(candidate_id, completed_at, score, reason.value)
        if not won:
            logger.info(f"[Finalizer] Candidate {candidate_id} was completed concurrently, keeping first result")
            return await self.completed_state(await self.repository.get_candidate(candidate_id))

        logger.info(
            f"[Finalizer] Candidate {candidate_id} completed ({reason.value}): "
            f"score={score}, answered={len(responses)}/{len(candidate.assignedQuestionIds)}"
        )

        if likert and responses and self.analyzer is not None:
            self.scheduler(self.analyzer(candidate_id))

        candidate = candidate.model_copy(
            update={"completedAt": completed_at, "totalScore": score, "completionReason": reason.value}
        )
        if self.notifier is not None:
            self.scheduler(self._notify_completed(candidate))

        return Completed(
            reason=reason.value,
            score=score,
            total=len(candidate.assignedQuestionIds),
            answered=len(responses),
        )

    async def _notify_completed(self, candidate: Candidate) -> None:
        assessment = await self.repository.get_assessment(candidate.assessmentId)
        await self.notifier.send("candidate_completed", candidate_completed_payload(assessment, candidate))
