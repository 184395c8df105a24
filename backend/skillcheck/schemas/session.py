from __future__ import annotations

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, EmailStr, Field

from ..models import Question
from ..services.integrity import EnvironmentSignal
from ..services.session_state import Completed, InProgress, SessionState


class StartSessionRequest(BaseModel):
    fullName: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    formFactor: Optional[str] = None  # falls back to the User-Agent header


class SubmitAnswerRequest(BaseModel):
    questionId: str
    answer: str = Field(..., min_length=1, max_length=1)


class TimeoutRequest(BaseModel):
    questionId: str


class SignalRequest(BaseModel):
    signal: EnvironmentSignal
    metadata: Optional[Dict[str, str]] = None


class CandidateQuestion(BaseModel):
    """A question as the candidate sees it: no correct answer."""

    id: str
    questionText: str
    options: Dict[str, str]

    @classmethod
    def from_question(cls, question: Question) -> "CandidateQuestion":
        return cls(id=question.id, questionText=question.questionText, options=question.options)


class InProgressState(BaseModel):
    status: str = "in_progress"
    cursor: int
    questionNumber: int
    total: int
    remaining: int
    questionId: str


class CompletedState(BaseModel):
    status: str = "completed"
    reason: str
    score: Optional[int] = None
    total: int
    answered: int
    scoreDisplay: Optional[str] = None
    percentage: Optional[int] = None


StateOut = Union[InProgressState, CompletedState]


def present_state(state: SessionState) -> StateOut:
    if isinstance(state, InProgress):
        return InProgressState(
            cursor=state.cursor,
            questionNumber=state.cursor + 1,
            total=state.total,
            remaining=state.remaining,
            questionId=state.question_id,
        )
    if isinstance(state, Completed):
        return CompletedState(
            reason=state.reason,
            score=state.score,
            total=state.total,
            answered=state.answered,
            scoreDisplay=f"{state.score}/{state.total}" if state.score is not None else None,
            percentage=state.percentage,
        )
    raise TypeError(f"No candidate view for {type(state).__name__}")


class AssessmentInfo(BaseModel):
    title: str
    description: Optional[str] = None
    assessmentType: str
    typeLabel: str
    language: str
    status: str
    questionCount: int
    secondsPerQuestion: int
    securityRules: List[str]


class SessionStarted(BaseModel):
    candidateId: str
    state: InProgressState
    questions: List[CandidateQuestion]
