import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect

from ..core.config import get_settings
from ..core.dependencies import get_integrity_monitor, get_session_engine
from ..core.exceptions import AssessmentError
from ..core.rate_limit import rate_limited
from ..schemas.session import (
    AssessmentInfo,
    CandidateQuestion,
    SessionStarted,
    SignalRequest,
    StartSessionRequest,
    SubmitAnswerRequest,
    TimeoutRequest,
    present_state,
)
from ..services.integrity import SECURITY_RULES, IntegrityMonitor, detect_form_factor
from ..services.live_session import LiveSession, WebSocketEventSource
from ..services.session_engine import SessionEngine
from ..utils.responses import error_response, success_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/take", tags=["candidate"])


@router.get("/{token}")
async def get_assessment_info(
    token: str,
    engine: SessionEngine = Depends(get_session_engine),
):
    assessment = await engine.get_assessment_by_token(token)
    question_count = await engine.repository.count_questions(assessment.id)
    if assessment.is_expired(datetime.now(timezone.utc)):
        pool_status = "expired"
    else:
        pool_status = "ready" if question_count else "preparing"
    info = AssessmentInfo(
        title=assessment.title,
        description=assessment.description,
        assessmentType=assessment.assessmentType,
        typeLabel=assessment.type_label,
        language=assessment.language,
        status=pool_status,
        questionCount=min(engine.assignment_size, question_count) if question_count else engine.assignment_size,
        secondsPerQuestion=engine.period_seconds,
        securityRules=SECURITY_RULES,
    )
    return success_response("Assessment fetched successfully", info.model_dump(mode="json"))


@router.post("/{token}/sessions", status_code=201)
@rate_limited(get_settings().start_session_rate_limit)
async def start_session(
    request: Request,
    token: str,
    payload: StartSessionRequest,
    engine: SessionEngine = Depends(get_session_engine),
):
    form_factor = payload.formFactor or detect_form_factor(request.headers.get("user-agent"))
    started = await engine.start_session(token, payload.fullName, payload.email, form_factor)
    body = SessionStarted(
        candidateId=started.candidate.id,
        state=present_state(started.state),
        questions=[CandidateQuestion.from_question(question) for question in started.questions],
    )
    return success_response("Assessment started", body.model_dump(mode="json"))


@router.get("/{token}/sessions/{candidate_id}")
async def get_session_state(
    token: str,
    candidate_id: str,
    engine: SessionEngine = Depends(get_session_engine),
):
    _, candidate = await engine.get_candidate(token, candidate_id)
    state = await engine.get_state(candidate)
    data = {"state": present_state(state).model_dump(mode="json")}
    question = await engine.current_question(candidate)
    if question is not None:
        data["question"] = CandidateQuestion.from_question(question).model_dump(mode="json")
    return success_response("Session fetched successfully", data)


@router.post("/{token}/sessions/{candidate_id}/answers")
async def submit_answer(
    token: str,
    candidate_id: str,
    payload: SubmitAnswerRequest,
    engine: SessionEngine = Depends(get_session_engine),
):
    await engine.get_candidate(token, candidate_id)
    state = await engine.submit_answer(candidate_id, payload.questionId, payload.answer)
    return success_response("Answer recorded", {"state": present_state(state).model_dump(mode="json")})


@router.post("/{token}/sessions/{candidate_id}/timeout")
async def expire_question(
    token: str,
    candidate_id: str,
    payload: TimeoutRequest,
    engine: SessionEngine = Depends(get_session_engine),
):
    await engine.get_candidate(token, candidate_id)
    state = await engine.expire_question(candidate_id, payload.questionId)
    return success_response("Time is up for this question", {"state": present_state(state).model_dump(mode="json")})


@router.post("/{token}/sessions/{candidate_id}/signals")
async def report_signal(
    token: str,
    candidate_id: str,
    payload: SignalRequest,
    engine: SessionEngine = Depends(get_session_engine),
    monitor: IntegrityMonitor = Depends(get_integrity_monitor),
):
    await engine.get_candidate(token, candidate_id)
    outcome = await monitor.observe(candidate_id, payload.signal, payload.metadata)
    data = {"terminated": outcome is not None}
    if outcome is not None:
        data["state"] = present_state(outcome).model_dump(mode="json")
    return success_response("Signal recorded", data)


@router.websocket("/{token}/sessions/{candidate_id}/live")
async def live_session(
    websocket: WebSocket,
    token: str,
    candidate_id: str,
    engine: SessionEngine = Depends(get_session_engine),
    monitor: IntegrityMonitor = Depends(get_integrity_monitor),
):
    await websocket.accept()
    try:
        await engine.get_candidate(token, candidate_id)
        session = LiveSession(
            engine,
            monitor,
            candidate_id,
            events=WebSocketEventSource(websocket),
            send=websocket.send_json,
        )
        await session.run()
        await websocket.close()
    except WebSocketDisconnect:
        logger.info(f"[Live] Candidate {candidate_id} disconnected")
    except AssessmentError as exc:
        logger.warning(f"[Live] Session {candidate_id} closed: {exc.message}")
        await websocket.send_json({"type": "error", **error_response(exc.message, exc.code)})
        await websocket.close(code=1008)
