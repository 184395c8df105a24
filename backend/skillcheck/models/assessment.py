from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..utils.mongo import new_id
from .constants import LIKERT_SENTINEL, PSYCHOMETRIC_TYPES


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Assessment(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    description: Optional[str] = None
    assessmentType: str
    topic: Optional[str] = None
    psychometricType: Optional[str] = None
    language: str = "es"
    shareToken: str
    recruiterId: Optional[str] = None  # None until claimed when created anonymously
    creatorEmail: Optional[str] = None
    createdAt: datetime = Field(default_factory=_now_utc)
    expiresAt: Optional[datetime] = None
    claimedAt: Optional[datetime] = None
    # Set while a pool generation holds the assessment
    generationStartedAt: Optional[datetime] = None

    @property
    def type_label(self) -> str:
        if self.assessmentType == "psychometric" and self.psychometricType:
            return PSYCHOMETRIC_TYPES.get(self.psychometricType, self.psychometricType)
        return self.assessmentType

    def is_expired(self, now: datetime) -> bool:
        if self.expiresAt is None:
            return False
        expires_at = self.expiresAt
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now >= expires_at

    def is_owned_by(self, user: Dict[str, str]) -> bool:
        user_id = user.get("id")
        if self.recruiterId is not None:
            return user_id is not None and str(self.recruiterId) == str(user_id)
        # Unclaimed assessments are visible to the email that created them
        email = (user.get("email") or "").strip().lower()
        return bool(email) and email == (self.creatorEmail or "").strip().lower()


class Question(BaseModel):
    id: str = Field(default_factory=new_id)
    assessmentId: str
    position: int = Field(..., ge=1)
    questionText: str
    options: Dict[str, str]
    correctAnswer: str
    createdAt: datetime = Field(default_factory=_now_utc)

    @property
    def is_likert(self) -> bool:
        return self.correctAnswer == LIKERT_SENTINEL


class Candidate(BaseModel):
    id: str = Field(default_factory=new_id)
    assessmentId: str
    fullName: str
    email: str
    assignedQuestionIds: List[str]
    startedAt: datetime = Field(default_factory=_now_utc)
    currentIndex: int = 0
    questionStartedAt: datetime = Field(default_factory=_now_utc)
    completedAt: Optional[datetime] = None
    completionReason: Optional[str] = None
    totalScore: Optional[int] = None
    psychometricAnalysis: Optional[str] = None
    formFactor: Optional[str] = None
    createdAt: datetime = Field(default_factory=_now_utc)

    @property
    def is_completed(self) -> bool:
        return self.completedAt is not None


class Response(BaseModel):
    id: str = Field(default_factory=new_id)
    candidateId: str
    questionId: str
    selectedAnswer: Optional[str] = None  # None when the countdown ran out
    isCorrect: bool = False
    timeTakenSeconds: int = Field(..., ge=0)
    timedOut: bool = False
    answeredAt: datetime = Field(default_factory=_now_utc)


class IntegrityEvent(BaseModel):
    id: str = Field(default_factory=new_id)
    assessmentId: str
    candidateId: str
    signal: str
    terminated: bool = False
    metadata: Optional[Dict[str, str]] = None
    occurredAt: datetime = Field(default_factory=_now_utc)
