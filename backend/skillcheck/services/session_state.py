"""
Session state for one candidate.

    Info --start--> InProgress(cursor, remaining) --advance--> InProgress(cursor + 1, period)
                        |                                          |
                        +--- cursor reaches the end (natural) -----+--> Completed(reason, score)
                        +--- visibility lost (forced) ---------------->
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from ..models import Candidate


class CompletionReason(str, Enum):
    NATURAL = "natural"
    FORCED = "forced"


@dataclass(frozen=True)
class Info:
    """Before the session exists: name and email capture only."""


@dataclass(frozen=True)
class InProgress:
    cursor: int
    remaining: int
    total: int
    question_id: str


@dataclass(frozen=True)
class Completed:
    reason: str
    score: Optional[int]
    total: int
    answered: int

    @property
    def percentage(self) -> Optional[int]:
        if self.score is None:
            return None
        return score_percentage(self.score, self.total)


SessionState = Union[Info, InProgress, Completed]


def score_percentage(score: int, total: int) -> int:
    """Percentage of the nominal question count, rounded half up."""
    if total <= 0:
        return 0
    return math.floor(score * 100 / total + 0.5)


def elapsed_seconds(started_at: datetime, now: datetime) -> int:
    return max(0, math.floor((now - started_at).total_seconds()))


def clamp_elapsed(elapsed: int, period: int) -> int:
    return max(0, min(elapsed, period))


def derive_state(candidate: Optional[Candidate], now: datetime, period: int, answered: int = 0) -> SessionState:
    if candidate is None:
        return Info()
    total = len(candidate.assignedQuestionIds)
    if candidate.is_completed:
        return Completed(
            reason=candidate.completionReason or CompletionReason.NATURAL.value,
            score=candidate.totalScore,
            total=total,
            answered=answered,
        )
    cursor = min(candidate.currentIndex, max(total - 1, 0))
    remaining = period - clamp_elapsed(elapsed_seconds(candidate.questionStartedAt, now), period)
    return InProgress(
        cursor=cursor,
        remaining=remaining,
        total=total,
        question_id=candidate.assignedQuestionIds[cursor] if total else "",
    )
