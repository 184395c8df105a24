from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from ..core.config import Settings, get_settings
from ..core.dependencies import (
    get_current_user,
    get_notifier,
    get_optional_user,
    get_pool_generator,
    get_repository,
)
from ..core.exceptions import (
    AccessDenied,
    AssessmentError,
    NotFound,
    ValidationError,
)
from ..core.security import generate_share_token, sanitize_text_field
from ..db.repository import AssessmentRepository
from ..models import Assessment, Candidate
from ..models.constants import PSYCHOMETRIC_TYPES
from ..schemas.assessment import (
    AssessmentSummary,
    CandidateDetail,
    CandidateResult,
    CreateAssessmentRequest,
    IntegrityEventOut,
    ResponseDetail,
)
from ..services.integrity import SIGNAL_LABELS
from ..services.notifications import WebhookNotifier, assessment_created_payload
from ..services.question_pool import QuestionPoolGenerator
from ..services.session_state import score_percentage
from ..utils.responses import success_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/assessments", tags=["assessments"])

TOPIC_TYPES = {"hard_skills", "soft_skills"}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _default_title(payload: CreateAssessmentRequest, topic: Optional[str]) -> str:
    if payload.assessmentType == "psychometric":
        return PSYCHOMETRIC_TYPES[payload.psychometricType]
    label = "Hard skills" if payload.assessmentType == "hard_skills" else "Soft skills"
    return f"{label}: {topic[:80]}" if topic else label


async def _get_owned_assessment(
    repository: AssessmentRepository,
    assessment_id: str,
    current_user: Dict[str, Any],
) -> Assessment:
    assessment = await repository.get_assessment(assessment_id)
    if assessment is None:
        raise NotFound("Assessment not found")
    if not assessment.is_owned_by(current_user):
        raise AccessDenied("Access denied. You can only access your own assessments.")
    return assessment


async def _summarize(repository: AssessmentRepository, assessment: Assessment) -> AssessmentSummary:
    question_count = await repository.count_questions(assessment.id)
    if assessment.is_expired(_now_utc()):
        pool_status = "expired"
    else:
        pool_status = "ready" if question_count else "preparing"
    return AssessmentSummary(
        id=assessment.id,
        title=assessment.title,
        description=assessment.description,
        assessmentType=assessment.assessmentType,
        typeLabel=assessment.type_label,
        topic=assessment.topic,
        psychometricType=assessment.psychometricType,
        language=assessment.language,
        shareToken=assessment.shareToken,
        status=pool_status,
        questionCount=question_count,
        candidateCount=await repository.count_candidates(assessment.id),
        createdAt=assessment.createdAt,
        expiresAt=assessment.expiresAt,
    )


def _candidate_result(candidate: Candidate) -> CandidateResult:
    total = len(candidate.assignedQuestionIds)
    score = candidate.totalScore
    return CandidateResult(
        id=candidate.id,
        fullName=candidate.fullName,
        email=candidate.email,
        startedAt=candidate.startedAt,
        completedAt=candidate.completedAt,
        completionReason=candidate.completionReason,
        totalScore=score,
        totalQuestions=total,
        scoreDisplay=f"{score}/{total}" if score is not None else None,
        percentage=score_percentage(score, total) if score is not None else None,
        psychometricAnalysis=candidate.psychometricAnalysis,
    )


async def _generate_pool_in_background(
    generator: QuestionPoolGenerator,
    assessment: Assessment,
    claimed_at: Optional[datetime] = None,
) -> None:
    try:
        await generator.generate_pool(assessment, claimed_at=claimed_at)
    except AssessmentError as exc:
        logger.error(f"[Generator] Pool generation failed for assessment {assessment.id}: {exc.message}")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_assessment(
    payload: CreateAssessmentRequest,
    background_tasks: BackgroundTasks,
    current_user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    repository: AssessmentRepository = Depends(get_repository),
    generator: QuestionPoolGenerator = Depends(get_pool_generator),
    notifier: WebhookNotifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
):
    topic = sanitize_text_field(payload.topic) or None
    if payload.assessmentType in TOPIC_TYPES:
        if not topic:
            raise ValidationError("A topic is required for skills assessments")
        if len(topic) > settings.max_topic_length:
            raise ValidationError(f"Topic must be at most {settings.max_topic_length} characters")

    if current_user is None and payload.creatorEmail is None:
        raise ValidationError("Sign in or provide creatorEmail to create an assessment")

    creator_email = payload.creatorEmail or (current_user or {}).get("email")
    assessment = Assessment(
        title=sanitize_text_field(payload.title) or _default_title(payload, topic),
        description=sanitize_text_field(payload.description),
        assessmentType=payload.assessmentType,
        topic=topic,
        psychometricType=payload.psychometricType,
        language=payload.language or settings.default_language,
        shareToken=generate_share_token(),
        recruiterId=current_user["id"] if current_user else None,
        creatorEmail=creator_email.strip().lower() if creator_email else None,
        expiresAt=payload.expiresAt,
    )
    await repository.create_assessment(assessment)
    logger.info(
        f"Assessment {assessment.id} created ({assessment.type_label}) "
        f"by {assessment.recruiterId or assessment.creatorEmail}"
    )

    background_tasks.add_task(notifier.send, "assessment_created", assessment_created_payload(assessment))
    background_tasks.add_task(_generate_pool_in_background, generator, assessment)

    summary = await _summarize(repository, assessment)
    return success_response("Assessment created. Questions are being prepared.", summary.model_dump(mode="json"))


@router.post("/{assessment_id}/generate", status_code=status.HTTP_202_ACCEPTED)
async def regenerate_pool(
    assessment_id: str,
    background_tasks: BackgroundTasks,
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: AssessmentRepository = Depends(get_repository),
    generator: QuestionPoolGenerator = Depends(get_pool_generator),
):
    assessment = await _get_owned_assessment(repository, assessment_id, current_user)
    # Claimed before responding, overlapping requests get 409
    claimed_at = await generator.claim(assessment)
    background_tasks.add_task(_generate_pool_in_background, generator, assessment, claimed_at)
    return success_response("Question generation started", {"assessmentId": assessment.id})


@router.get("")
async def list_assessments(
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: AssessmentRepository = Depends(get_repository),
):
    try:
        assessments = await repository.list_assessments_for_owner(current_user["id"], current_user.get("email"))
        summaries: List[Dict[str, Any]] = []
        for assessment in assessments:
            summary = await _summarize(repository, assessment)
            summaries.append(summary.model_dump(mode="json"))
        return success_response("Assessments fetched successfully", summaries)
    except (HTTPException, AssessmentError):
        raise
    except Exception as exc:
        logger.exception(f"Error listing assessments: {exc}")
        raise HTTPException(status_code=500, detail="Failed to fetch assessments") from exc


@router.get("/{assessment_id}")
async def get_assessment(
    assessment_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: AssessmentRepository = Depends(get_repository),
):
    assessment = await _get_owned_assessment(repository, assessment_id, current_user)
    summary = await _summarize(repository, assessment)
    return success_response("Assessment fetched successfully", summary.model_dump(mode="json"))


@router.get("/{assessment_id}/candidates")
async def list_candidate_results(
    assessment_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: AssessmentRepository = Depends(get_repository),
):
    assessment = await _get_owned_assessment(repository, assessment_id, current_user)
    candidates = await repository.list_candidates(assessment.id)
    results = [_candidate_result(candidate).model_dump(mode="json") for candidate in candidates]
    return success_response("Candidates fetched successfully", results)


@router.get("/{assessment_id}/candidates/{candidate_id}")
async def get_candidate_result(
    assessment_id: str,
    candidate_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: AssessmentRepository = Depends(get_repository),
):
    assessment = await _get_owned_assessment(repository, assessment_id, current_user)
    candidate = await repository.get_candidate(candidate_id)
    if candidate is None or candidate.assessmentId != assessment.id:
        raise NotFound("Candidate not found")

    responses = await repository.list_responses(candidate.id)
    questions = {
        question.id: question
        for question in await repository.get_questions_by_ids([response.questionId for response in responses])
    }
    response_details = []
    for response in responses:
        question = questions.get(response.questionId)
        response_details.append(
            ResponseDetail(
                questionId=response.questionId,
                questionText=question.questionText if question else "",
                selectedAnswer=response.selectedAnswer,
                selectedOption=question.options.get(response.selectedAnswer) if question and response.selectedAnswer else None,
                isCorrect=response.isCorrect,
                timedOut=response.timedOut,
                timeTakenSeconds=response.timeTakenSeconds,
                answeredAt=response.answeredAt,
            )
        )

    events = [
        IntegrityEventOut(
            signal=event.signal,
            label=SIGNAL_LABELS.get(event.signal, event.signal),
            terminated=event.terminated,
            metadata=event.metadata,
            occurredAt=event.occurredAt,
        )
        for event in await repository.list_integrity_events(candidate.id)
    ]

    detail = CandidateDetail(
        **_candidate_result(candidate).model_dump(),
        responses=response_details,
        integrityEvents=events,
    )
    return success_response("Candidate fetched successfully", detail.model_dump(mode="json"))
