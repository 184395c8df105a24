"""
Question pool generation.

Turns one upstream authoring call into a validated, balanced pool of
questions and stores it as a single batch. Objective pools carry four
options and a correct label in A-D; personality pools carry the fixed
five-point agreement scale and the LIKERT sentinel.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from ..core.exceptions import (
    GenerationInsufficient,
    GenerationMalformed,
    PersistenceError,
    PoolAlreadyGenerated,
)
from ..models import Assessment, Question
from ..models.constants import (
    LIKERT_SENTINEL,
    OBJECTIVE_LABELS,
    is_likert_subtype,
    likert_options,
)
from .ai import generate_question_items

logger = logging.getLogger(__name__)

# (assessment_type, topic, psychometric_type, language, count) -> raw items
QuestionSource = Callable[[str, Optional[str], Optional[str], str, int], Awaitable[Any]]

MAX_LABEL_GAP = 5
# Each label must land within this distance of an even split (10-15 of 50)
LABEL_SHARE_TOLERANCE = 2.5


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PoolItem:
    text: str
    options: Dict[str, str]
    correct: str


def _first_text(raw: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _objective_options(raw_options: Any) -> Dict[str, str]:
    if isinstance(raw_options, Mapping):
        options = {str(label).strip().upper(): value for label, value in raw_options.items()}
    elif isinstance(raw_options, (list, tuple)):
        options = dict(zip(OBJECTIVE_LABELS, raw_options))
    else:
        return {}
    return {
        label: options[label].strip()
        for label in OBJECTIVE_LABELS
        if isinstance(options.get(label), str) and options[label].strip()
    }


def normalize_objective_item(raw: Any, position: int) -> PoolItem:
    if not isinstance(raw, Mapping):
        raise GenerationMalformed(f"Question {position} is not an object")
    text = _first_text(raw, "question", "questionText", "text")
    if not text:
        raise GenerationMalformed(f"Question {position} has no text")

    options = _objective_options(raw.get("options"))
    if len(options) != len(OBJECTIVE_LABELS):
        raise GenerationMalformed(f"Question {position} must have options A, B, C and D")
    if len({value.lower() for value in options.values()}) != len(OBJECTIVE_LABELS):
        raise GenerationMalformed(f"Question {position} has duplicate options")

    correct = str(raw.get("correct") or raw.get("correctAnswer") or raw.get("correctLabel") or "")
    correct = correct.strip().upper().rstrip(").:")
    if correct not in OBJECTIVE_LABELS:
        raise GenerationMalformed(f"Question {position} has an invalid correct answer: {correct!r}")
    return PoolItem(text=text, options=options, correct=correct)


def normalize_likert_item(raw: Any, position: int, language: str) -> PoolItem:
    if isinstance(raw, str) and raw.strip():
        text = raw.strip()
    elif isinstance(raw, Mapping):
        text = _first_text(raw, "question", "questionText", "statement", "text")
    else:
        text = ""
    if not text:
        raise GenerationMalformed(f"Statement {position} has no text")
    # Upstream options are ignored, the scale is fixed per language
    return PoolItem(text=text, options=likert_options(language), correct=LIKERT_SENTINEL)


def repair_count(
    items: Sequence[PoolItem], pool_size: int, min_pool_size: int, rng: random.Random
) -> List[PoolItem]:
    """Pad a short batch with random duplicates or truncate a long one to ``pool_size``."""
    if len(items) < min_pool_size:
        raise GenerationInsufficient(
            f"AI returned {len(items)} usable questions, at least {min_pool_size} are required"
        )
    repaired = list(items[:pool_size])
    originals = list(repaired)
    while len(repaired) < pool_size:
        repaired.append(rng.choice(originals))
    return repaired


def answer_distribution(items: Sequence[PoolItem]) -> Dict[str, int]:
    distribution = {label: 0 for label in OBJECTIVE_LABELS}
    for item in items:
        if item.correct in distribution:
            distribution[item.correct] += 1
    return distribution


def is_skewed(distribution: Mapping[str, int], pool_size: int) -> bool:
    counts = list(distribution.values())
    if max(counts) - min(counts) > MAX_LABEL_GAP:
        return True
    even_share = pool_size / len(OBJECTIVE_LABELS)
    return min(counts) < even_share - LABEL_SHARE_TOLERANCE or max(counts) > even_share + LABEL_SHARE_TOLERANCE


def rebalance_correct_answers(items: Sequence[PoolItem]) -> List[PoolItem]:
    """
    Reassign correct labels round-robin (A, B, C, D, A, ...) when the distribution is skewed.

    The text under the old correct label is swapped into the new correct slot so the
    right answer keeps its content.
    """
    distribution = answer_distribution(items)
    if not is_skewed(distribution, len(items)):
        return list(items)

    logger.info(f"[Generator] Rebalancing skewed answer distribution {distribution}")
    rebalanced: List[PoolItem] = []
    for index, item in enumerate(items):
        target = OBJECTIVE_LABELS[index % len(OBJECTIVE_LABELS)]
        if item.correct == target:
            rebalanced.append(item)
            continue
        options = dict(item.options)
        options[target], options[item.correct] = item.options[item.correct], item.options[target]
        rebalanced.append(replace(item, options=options, correct=target))
    return rebalanced


class QuestionPoolGenerator:
    def __init__(
        self,
        repository: Any,
        source: QuestionSource = generate_question_items,
        rng: Optional[random.Random] = None,
        pool_size: int = 50,
        min_pool_size: int = 40,
        clock: Callable[[], datetime] = _now_utc,
        claim_timeout_seconds: int = 600,
    ) -> None:
        self.repository = repository
        self.source = source
        self.rng = rng or random.Random()
        self.pool_size = pool_size
        self.min_pool_size = min_pool_size
        self.clock = clock
        self.claim_timeout_seconds = claim_timeout_seconds

    def build_items(self, assessment: Assessment, raw_items: Any) -> List[PoolItem]:
        if not isinstance(raw_items, list):
            raise GenerationMalformed("AI response is not a list of questions")

        if is_likert_subtype(assessment.assessmentType, assessment.psychometricType):
            items = [
                normalize_likert_item(raw, position, assessment.language)
                for position, raw in enumerate(raw_items, start=1)
            ]
            return repair_count(items, self.pool_size, self.min_pool_size, self.rng)

        items = [normalize_objective_item(raw, position) for position, raw in enumerate(raw_items, start=1)]
        items = repair_count(items, self.pool_size, self.min_pool_size, self.rng)
        return rebalance_correct_answers(items)

    async def claim(self, assessment: Assessment) -> datetime:
        """Reserve the assessment for one generation. Returns the claim timestamp."""
        existing = await self.repository.count_questions(assessment.id)
        if existing:
            raise PoolAlreadyGenerated(f"Assessment already has {existing} questions")

        now = self.clock()
        # Mongo keeps milliseconds, the release matches on this exact value
        started_at = now.replace(microsecond=now.microsecond // 1000 * 1000)
        stale_before = started_at - timedelta(seconds=self.claim_timeout_seconds)
        if not await self.repository.claim_pool_generation(assessment.id, started_at, stale_before):
            raise PoolAlreadyGenerated("Questions for this assessment are already being generated")
        return started_at

    async def generate_pool(self, assessment: Assessment, claimed_at: Optional[datetime] = None) -> List[Question]:
        if claimed_at is None:
            claimed_at = await self.claim(assessment)
        try:
            return await self._generate_claimed(assessment)
        except Exception:
            await self._release(assessment, claimed_at)
            raise

    async def _release(self, assessment: Assessment, claimed_at: datetime) -> None:
        try:
            await self.repository.release_pool_generation(assessment.id, claimed_at)
        except PersistenceError as exc:
            # The claim expires after claim_timeout_seconds
            logger.error(f"[Generator] Could not release generation claim on {assessment.id}: {exc.message}")

    async def _generate_claimed(self, assessment: Assessment) -> List[Question]:
        raw_items = await self.source(
            assessment.assessmentType,
            assessment.topic,
            assessment.psychometricType,
            assessment.language,
            self.pool_size,
        )
        items = self.build_items(assessment, raw_items)
        if len(raw_items) != len(items):
            logger.warning(
                f"[Generator] Assessment {assessment.id}: repaired {len(raw_items)} upstream questions to {len(items)}"
            )

        questions = [
            Question(
                assessmentId=assessment.id,
                position=position,
                questionText=item.text,
                options=item.options,
                correctAnswer=item.correct,
            )
            for position, item in enumerate(items, start=1)
        ]
        await self.repository.insert_question_batch(assessment.id, questions)
        logger.info(
            f"[Generator] Stored {len(questions)} questions for assessment {assessment.id} "
            f"(distribution: {answer_distribution(items)})"
        )
        return questions
