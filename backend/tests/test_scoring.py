"""
Tests for the scoring finalizer and the psychometric analysis it triggers.
"""
import pytest
import pytest_asyncio

from fakes import make_assessment, seed_pool
from skillcheck.core.exceptions import NotFound
from skillcheck.services.analysis import PsychometricAnalyzer
from skillcheck.services.scoring import ScoringFinalizer
from skillcheck.services.session_state import CompletionReason, score_percentage


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def send(self, event, payload):
        self.sent.append((event, payload))


@pytest_asyncio.fixture
async def likert_session(engine, repository):
    assessment = make_assessment(
        assessmentType="psychometric", psychometricType="big_five", topic=None, shareToken="token-b5"
    )
    repository.assessments[assessment.id] = assessment
    seed_pool(repository, assessment, likert=True)
    started = await engine.start_session("token-b5", "Ana", "ana@example.com")
    return started.candidate.id


@pytest.mark.parametrize(
    "score, total, expected",
    [(14, 20, 70), (0, 20, 0), (20, 20, 100), (1, 8, 13), (5, 20, 25), (1, 3, 33), (2, 3, 67)],
)
def test_score_percentage_rounds_half_up(score, total, expected):
    assert score_percentage(score, total) == expected


@pytest.mark.asyncio
async def test_finalize_is_idempotent(engine, finalizer, repository, assessment):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")
    candidate_id = started.candidate.id

    first = await finalizer.finalize(candidate_id, CompletionReason.FORCED)
    second = await finalizer.finalize(candidate_id, CompletionReason.NATURAL)

    assert first == second
    assert first.reason == "forced"
    assert first.score == 0
    assert repository.candidates[candidate_id].completionReason == "forced"


@pytest.mark.asyncio
async def test_finalize_unknown_candidate(finalizer):
    with pytest.raises(NotFound):
        await finalizer.finalize("missing", CompletionReason.NATURAL)


@pytest.mark.asyncio
async def test_likert_completion_schedules_analysis(repository, scheduler, clock, engine, likert_session):
    narrated = []

    async def narrate(psychometric_type, language, answered):
        narrated.append((psychometric_type, language, list(answered)))
        return "Collaborative and steady under pressure."

    analyzer = PsychometricAnalyzer(repository, narrate=narrate)
    engine.finalizer = ScoringFinalizer(repository, analyzer=analyzer.analyze, scheduler=scheduler, clock=clock)

    candidate = repository.candidates[likert_session]
    first_question = candidate.assignedQuestionIds[0]
    await engine.submit_answer(likert_session, first_question, "D")
    await engine.expire_question(likert_session, candidate.assignedQuestionIds[1])
    state = await engine.finalizer.finalize(likert_session, CompletionReason.FORCED)

    assert state.score is None
    assert repository.candidates[likert_session].psychometricAnalysis is None
    assert len(scheduler.scheduled) == 1

    await scheduler.drain()

    [(psychometric_type, language, answered)] = narrated
    assert psychometric_type == "big_five"
    assert language == "en"
    assert answered == [
        (repository.questions[first_question].questionText, "Agree"),
        (repository.questions[candidate.assignedQuestionIds[1]].questionText, "No answer"),
    ]
    assert repository.candidates[likert_session].psychometricAnalysis == "Collaborative and steady under pressure."


@pytest.mark.asyncio
async def test_likert_session_without_answers_skips_analysis(repository, scheduler, clock, likert_session):
    called = []

    async def analyzer(candidate_id):
        called.append(candidate_id)

    finalizer = ScoringFinalizer(repository, analyzer=analyzer, scheduler=scheduler, clock=clock)

    await finalizer.finalize(likert_session, CompletionReason.FORCED)

    assert scheduler.scheduled == []


@pytest.mark.asyncio
async def test_objective_completion_does_not_schedule_analysis(engine, repository, scheduler, clock, assessment):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")
    called = []

    async def analyzer(candidate_id):
        called.append(candidate_id)

    finalizer = ScoringFinalizer(repository, analyzer=analyzer, scheduler=scheduler, clock=clock)
    candidate = repository.candidates[started.candidate.id]
    await engine.submit_answer(candidate.id, candidate.assignedQuestionIds[0], "A")

    await finalizer.finalize(candidate.id, CompletionReason.FORCED)

    assert scheduler.scheduled == []


@pytest.mark.asyncio
async def test_completion_notifies_with_score_display(engine, repository, scheduler, clock, assessment):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")
    notifier = RecordingNotifier()
    finalizer = ScoringFinalizer(repository, notifier=notifier, scheduler=scheduler, clock=clock)
    candidate = repository.candidates[started.candidate.id]
    question_id = candidate.assignedQuestionIds[0]
    await engine.submit_answer(candidate.id, question_id, repository.questions[question_id].correctAnswer)

    await finalizer.finalize(candidate.id, CompletionReason.FORCED)
    await scheduler.drain()

    [(event, payload)] = notifier.sent
    assert event == "candidate_completed"
    assert payload["candidateEmail"] == "ana@example.com"
    assert payload["assessmentTitle"] == assessment.title
    assert payload["score"] == 1
    assert payload["scoreDisplay"] == "1/20"
    assert payload["completionReason"] == "forced"
