"""
Unit tests for assignment and question-by-question progression.
"""
import random
from collections import Counter
from datetime import timedelta

import pytest

from fakes import make_assessment, seed_pool
from skillcheck.core.exceptions import (
    DeviceNotAllowed,
    NotFound,
    PersistenceError,
    PoolNotReady,
    SessionConflict,
    ValidationError,
)
from skillcheck.models import Response
from skillcheck.services.integrity import DevicePolicy
from skillcheck.services.session_engine import SessionEngine
from skillcheck.services.session_state import Completed, InProgress


def wrong_label(correct):
    return next(label for label in "ABCD" if label != correct)


async def answer_current(engine, repository, candidate_id, correct=True, remaining=None):
    candidate = repository.candidates[candidate_id]
    question_id = candidate.assignedQuestionIds[candidate.currentIndex]
    right = repository.questions[question_id].correctAnswer
    label = right if correct else wrong_label(right)
    return await engine.submit_answer(candidate_id, question_id, label, remaining=remaining)


@pytest.mark.asyncio
async def test_start_session_assigns_twenty_distinct_pool_questions(engine, repository, assessment):
    pool = seed_pool(repository, assessment)

    started = await engine.start_session(assessment.shareToken, " Ana Pérez ", "Ana@Example.com", "mobile")

    ids = started.candidate.assignedQuestionIds
    assert len(ids) == 20
    assert len(set(ids)) == 20
    assert set(ids) <= {q.id for q in pool}
    assert [q.id for q in started.questions] == ids
    positions = [q.position for q in started.questions]
    assert positions != sorted(positions)
    assert started.candidate.fullName == "Ana Pérez"
    assert started.candidate.email == "ana@example.com"
    assert started.state == InProgress(cursor=0, remaining=40, total=20, question_id=ids[0])
    assert repository.candidates[started.candidate.id].currentIndex == 0


@pytest.mark.asyncio
async def test_assignment_covers_the_pool_uniformly(repository, finalizer, clock, assessment):
    pool = seed_pool(repository, assessment)
    engine = SessionEngine(repository, finalizer, rng=random.Random(2024), clock=clock)
    appearances = Counter()

    draws = 500
    for index in range(draws):
        started = await engine.start_session(assessment.shareToken, f"Candidate {index}", f"c{index}@example.com")
        appearances.update(started.candidate.assignedQuestionIds)

    expected = draws * 20 / len(pool)
    assert set(appearances) == {q.id for q in pool}
    assert all(0.7 * expected <= count <= 1.3 * expected for count in appearances.values())


@pytest.mark.asyncio
async def test_two_candidates_get_different_orders(engine, repository, assessment):
    seed_pool(repository, assessment)

    first = await engine.start_session(assessment.shareToken, "One", "one@example.com")
    second = await engine.start_session(assessment.shareToken, "Two", "two@example.com")

    assert first.candidate.assignedQuestionIds != second.candidate.assignedQuestionIds


@pytest.mark.asyncio
async def test_start_before_pool_is_ready(engine, assessment):
    with pytest.raises(PoolNotReady):
        await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")


@pytest.mark.asyncio
async def test_start_with_unknown_or_expired_token(engine, repository, clock):
    with pytest.raises(NotFound):
        await engine.start_session("nope", "Ana", "ana@example.com")

    expired = make_assessment(shareToken="token-old", expiresAt=clock() - timedelta(days=1))
    repository.assessments[expired.id] = expired
    seed_pool(repository, expired)
    with pytest.raises(NotFound):
        await engine.start_session("token-old", "Ana", "ana@example.com")


@pytest.mark.asyncio
async def test_start_requires_name_and_email(engine, repository, assessment):
    seed_pool(repository, assessment)

    with pytest.raises(ValidationError):
        await engine.start_session(assessment.shareToken, "   ", "ana@example.com")
    with pytest.raises(ValidationError):
        await engine.start_session(assessment.shareToken, "Ana", "not-an-email")
    assert repository.candidates == {}


@pytest.mark.asyncio
async def test_device_gate_runs_before_the_session_exists(repository, finalizer, clock, assessment):
    seed_pool(repository, assessment)
    engine = SessionEngine(repository, finalizer, device_policy=DevicePolicy(require_mobile=True), clock=clock)

    with pytest.raises(DeviceNotAllowed):
        await engine.start_session(assessment.shareToken, "Ana", "ana@example.com", "desktop")
    assert repository.candidates == {}

    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com", "tablet")
    assert started.candidate.formFactor == "tablet"


@pytest.mark.asyncio
async def test_fourteen_of_twenty_scores_seventy_percent(engine, repository, assessment):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")
    candidate_id = started.candidate.id

    state = None
    for index in range(20):
        state = await answer_current(engine, repository, candidate_id, correct=index < 14)
        if index < 19:
            assert isinstance(state, InProgress)
            assert state.cursor == index + 1
            assert state.remaining == 40

    assert isinstance(state, Completed)
    assert state.reason == "natural"
    assert state.score == 14
    assert state.total == 20
    assert state.percentage == 70
    assert len(await repository.list_responses(candidate_id)) == 20
    stored = repository.candidates[candidate_id]
    assert stored.totalScore == 14
    assert stored.completionReason == "natural"


@pytest.mark.asyncio
async def test_timeout_records_an_empty_answer_and_advances(engine, repository, assessment):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")
    first = started.state.question_id

    state = await engine.expire_question(started.candidate.id, first)

    assert state.cursor == 1
    [response] = await repository.list_responses(started.candidate.id)
    assert response.questionId == first
    assert response.selectedAnswer is None
    assert response.timedOut is True
    assert response.isCorrect is False
    assert response.timeTakenSeconds == 40


@pytest.mark.asyncio
async def test_late_answer_counts_as_timed_out(engine, repository, assessment, clock):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")
    clock.advance(43)

    await answer_current(engine, repository, started.candidate.id, correct=True)

    [response] = await repository.list_responses(started.candidate.id)
    assert response.timedOut is True
    assert response.isCorrect is False
    assert response.selectedAnswer is None


@pytest.mark.asyncio
async def test_answer_within_grace_is_accepted(engine, repository, assessment, clock):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")
    clock.advance(41)

    await answer_current(engine, repository, started.candidate.id, correct=True)

    [response] = await repository.list_responses(started.candidate.id)
    assert response.timedOut is False
    assert response.isCorrect is True
    assert response.timeTakenSeconds == 40


@pytest.mark.asyncio
async def test_time_taken_comes_from_the_live_countdown(engine, repository, assessment):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")

    await answer_current(engine, repository, started.candidate.id, remaining=28)

    [response] = await repository.list_responses(started.candidate.id)
    assert response.timeTakenSeconds == 12


@pytest.mark.asyncio
async def test_answer_for_a_question_that_is_not_current(engine, repository, assessment):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")
    later = started.candidate.assignedQuestionIds[5]

    with pytest.raises(SessionConflict):
        await engine.submit_answer(started.candidate.id, later, "A")
    assert await repository.list_responses(started.candidate.id) == []


@pytest.mark.asyncio
async def test_invalid_label_is_rejected(engine, repository, assessment):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")

    with pytest.raises(ValidationError):
        await engine.submit_answer(started.candidate.id, started.state.question_id, "E")
    assert repository.candidates[started.candidate.id].currentIndex == 0


@pytest.mark.asyncio
async def test_failed_response_write_does_not_advance(engine, repository, assessment):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")
    repository.fail_response_inserts = 1

    with pytest.raises(PersistenceError):
        await answer_current(engine, repository, started.candidate.id)
    assert repository.candidates[started.candidate.id].currentIndex == 0

    state = await answer_current(engine, repository, started.candidate.id)
    assert state.cursor == 1
    assert len(await repository.list_responses(started.candidate.id)) == 1


@pytest.mark.asyncio
async def test_retry_after_stored_response_advances_once(engine, repository, assessment, clock):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")
    question_id = started.state.question_id
    # A previous attempt stored the response but never moved the cursor
    repository.responses.append(
        Response(
            candidateId=started.candidate.id,
            questionId=question_id,
            selectedAnswer="A",
            timeTakenSeconds=3,
            answeredAt=clock(),
        )
    )

    state = await engine.submit_answer(started.candidate.id, question_id, "A")

    assert state.cursor == 1
    assert len(await repository.list_responses(started.candidate.id)) == 1


@pytest.mark.asyncio
async def test_answers_after_completion_are_refused(engine, repository, assessment):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")
    for _ in range(20):
        await answer_current(engine, repository, started.candidate.id)

    with pytest.raises(SessionConflict):
        await engine.submit_answer(started.candidate.id, started.candidate.assignedQuestionIds[-1], "A")
    assert len(await repository.list_responses(started.candidate.id)) == 20


@pytest.mark.asyncio
async def test_state_reports_remaining_time_from_the_clock(engine, repository, assessment, clock):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")
    clock.advance(15)

    state = await engine.get_state(repository.candidates[started.candidate.id])

    assert state.cursor == 0
    assert state.remaining == 25


@pytest.mark.asyncio
async def test_state_finishes_a_session_whose_completion_was_lost(engine, repository, assessment):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")
    candidate = repository.candidates[started.candidate.id]
    repository.candidates[candidate.id] = candidate.model_copy(update={"currentIndex": 20})

    state = await engine.get_state(repository.candidates[candidate.id])

    assert isinstance(state, Completed)
    assert state.reason == "natural"
    assert repository.candidates[candidate.id].is_completed


@pytest.mark.asyncio
async def test_likert_session_accepts_five_labels_and_is_not_scored(engine, repository):
    assessment = make_assessment(
        assessmentType="psychometric", psychometricType="disc", topic=None, shareToken="token-disc"
    )
    repository.assessments[assessment.id] = assessment
    seed_pool(repository, assessment, likert=True)
    started = await engine.start_session("token-disc", "Ana", "ana@example.com")

    state = None
    for _ in range(20):
        candidate = repository.candidates[started.candidate.id]
        state = await engine.submit_answer(candidate.id, candidate.assignedQuestionIds[candidate.currentIndex], "E")

    assert isinstance(state, Completed)
    assert state.score is None
    assert state.percentage is None
    assert all(r.selectedAnswer == "E" and not r.isCorrect for r in repository.responses)


@pytest.mark.asyncio
async def test_answer_from_a_stale_read_is_a_conflict(engine, repository, assessment, monkeypatch):
    seed_pool(repository, assessment)
    started = await engine.start_session(assessment.shareToken, "Ana", "ana@example.com")
    candidate_id = started.candidate.id
    stale = repository.candidates[candidate_id]
    first = started.state.question_id
    await engine.submit_answer(candidate_id, first, "A")

    # Another worker still sees the cursor on the first question
    async def stale_get_candidate(_candidate_id):
        return stale

    monkeypatch.setattr(repository, "get_candidate", stale_get_candidate)

    with pytest.raises(SessionConflict):
        await engine.submit_answer(candidate_id, first, "B")

    assert repository.candidates[candidate_id].currentIndex == 1
    [response] = repository.responses
    assert response.selectedAnswer == "A"
