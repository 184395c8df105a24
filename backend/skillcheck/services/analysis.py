from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, Tuple

from ..core.exceptions import NotFound
from .ai import generate_personality_analysis

logger = logging.getLogger(__name__)

Narrator = Callable[[Optional[str], str, Sequence[Tuple[str, str]]], Awaitable[str]]


class PsychometricAnalyzer:
    """Reads a candidate's Likert answers and stores a personality narrative on the candidate."""

    def __init__(self, repository: Any, narrate: Narrator = generate_personality_analysis) -> None:
        self.repository = repository
        self.narrate = narrate

    async def analyze(self, candidate_id: str) -> Optional[str]:
        candidate = await self.repository.get_candidate(candidate_id)
        if candidate is None:
            raise NotFound("Candidate not found")
        assessment = await self.repository.get_assessment(candidate.assessmentId)
        if assessment is None:
            raise NotFound("Assessment not found")

        responses = await self.repository.list_responses(candidate_id)
        questions = {
            question.id: question
            for question in await self.repository.get_questions_by_ids([r.questionId for r in responses])
        }
        answered = []
        for response in responses:
            question = questions.get(response.questionId)
            if question is None or not question.is_likert:
                continue
            label = question.options.get(response.selectedAnswer or "", "No answer")
            answered.append((question.questionText, label))
        if not answered:
            logger.info(f"[Analysis] Candidate {candidate_id} has no Likert responses, skipping analysis")
            return None

        logger.info(f"[Analysis] Analyzing {len(answered)} responses for candidate {candidate_id}")
        analysis = await self.narrate(assessment.psychometricType, assessment.language, answered)
        await self.repository.set_candidate_analysis(candidate_id, analysis)
        logger.info(f"[Analysis] Analysis stored for candidate {candidate_id}")
        return analysis
