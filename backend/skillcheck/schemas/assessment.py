from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

from ..models.constants import ASSESSMENT_TYPES, PSYCHOMETRIC_TYPES, SUPPORTED_LANGUAGES


class CreateAssessmentRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    assessmentType: str
    topic: Optional[str] = None
    psychometricType: Optional[str] = None
    language: Optional[str] = None
    creatorEmail: Optional[EmailStr] = None  # required when the caller is not signed in
    expiresAt: Optional[datetime] = None

    @model_validator(mode="after")
    def check_type_fields(self) -> "CreateAssessmentRequest":
        if self.assessmentType not in ASSESSMENT_TYPES:
            raise ValueError(f"assessmentType must be one of {', '.join(sorted(ASSESSMENT_TYPES))}")
        if self.assessmentType == "psychometric":
            if self.psychometricType not in PSYCHOMETRIC_TYPES:
                raise ValueError("psychometricType is required for psychometric assessments")
        elif self.psychometricType is not None:
            raise ValueError("psychometricType only applies to psychometric assessments")
        if self.language is not None and self.language not in SUPPORTED_LANGUAGES:
            raise ValueError(f"language must be one of {', '.join(sorted(SUPPORTED_LANGUAGES))}")
        return self


class AssessmentSummary(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    assessmentType: str
    typeLabel: str
    topic: Optional[str] = None
    psychometricType: Optional[str] = None
    language: str
    shareToken: str
    status: str
    questionCount: int
    candidateCount: int
    createdAt: datetime
    expiresAt: Optional[datetime] = None


class CandidateResult(BaseModel):
    id: str
    fullName: str
    email: str
    startedAt: datetime
    completedAt: Optional[datetime] = None
    completionReason: Optional[str] = None
    totalScore: Optional[int] = None
    totalQuestions: int
    scoreDisplay: Optional[str] = None
    percentage: Optional[int] = None
    psychometricAnalysis: Optional[str] = None


class ResponseDetail(BaseModel):
    questionId: str
    questionText: str
    selectedAnswer: Optional[str] = None
    selectedOption: Optional[str] = None
    isCorrect: bool
    timedOut: bool
    timeTakenSeconds: int
    answeredAt: datetime


class IntegrityEventOut(BaseModel):
    signal: str
    label: str
    terminated: bool
    metadata: Optional[Dict[str, str]] = None
    occurredAt: datetime


class CandidateDetail(CandidateResult):
    responses: List[ResponseDetail]
    integrityEvents: List[IntegrityEventOut]
