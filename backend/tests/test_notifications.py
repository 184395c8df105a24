"""
Tests for webhook notifications.
"""
import json
import logging

import httpx
import pytest

from fakes import make_assessment
from skillcheck.models import Candidate
from skillcheck.services.notifications import (
    WebhookNotifier,
    assessment_created_payload,
    candidate_completed_payload,
)


def recording_transport(status_by_host, seen):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.host, json.loads(request.content)))
        if request.url.host == "old.example.com":
            return httpx.Response(307, headers={"Location": "https://new.example.com/hook"})
        return httpx.Response(status_by_host.get(request.url.host, 200))

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_failed_delivery_is_logged_not_raised(caplog):
    seen = []
    notifier = WebhookNotifier(
        ["https://hooks.example.com/a", "https://broken.example.com/b"],
        transport=recording_transport({"broken.example.com": 500}, seen),
    )

    with caplog.at_level(logging.ERROR):
        await notifier.send("assessment_created", {"assessmentTitle": "Python"})

    assert [host for host, _ in seen] == ["hooks.example.com", "broken.example.com"]
    assert seen[0][1]["event"] == "assessment_created"
    assert seen[0][1]["assessmentTitle"] == "Python"
    assert "broken.example.com" in caplog.text


@pytest.mark.asyncio
async def test_redirects_are_followed():
    seen = []
    notifier = WebhookNotifier(["https://old.example.com/hook"], transport=recording_transport({}, seen))

    await notifier.send("candidate_completed", {"score": 3})

    assert [host for host, _ in seen] == ["old.example.com", "new.example.com"]


@pytest.mark.asyncio
async def test_redirect_loops_are_bounded(caplog):
    seen = []

    def handler(request):
        seen.append(request.url)
        return httpx.Response(302, headers={"Location": "https://loop.example.com/again"})

    notifier = WebhookNotifier(["https://loop.example.com/start"], max_redirects=2, transport=httpx.MockTransport(handler))

    with caplog.at_level(logging.ERROR):
        await notifier.send("candidate_completed", {})

    assert len(seen) == 3
    assert "Failed to deliver" in caplog.text


@pytest.mark.asyncio
async def test_no_urls_sends_nothing():
    await WebhookNotifier([]).send("assessment_created", {})


def test_completed_payload_for_likert_has_no_score_display(clock):
    assessment = make_assessment(assessmentType="psychometric", psychometricType="mbti", topic=None)
    candidate = Candidate(
        assessmentId=assessment.id,
        fullName="Ana",
        email="ana@example.com",
        assignedQuestionIds=[str(i) for i in range(20)],
        completedAt=clock(),
        completionReason="natural",
    )

    payload = candidate_completed_payload(assessment, candidate)

    assert payload["score"] is None
    assert payload["scoreDisplay"] is None
    assert payload["totalQuestions"] == 20
    assert payload["psychometricType"] == "mbti"


def test_created_payload_names_the_owner():
    assessment = make_assessment(recruiterId=None, creatorEmail="hr@example.com")

    payload = assessment_created_payload(assessment)

    assert payload["owner"] == "hr@example.com"
    assert payload["assessmentType"] == "hard_skills"


@pytest.mark.asyncio
async def test_invalid_url_is_logged_and_the_rest_are_delivered(caplog):
    seen = []
    notifier = WebhookNotifier(
        ["https://hooks.example.com/\x00broken", "https://hooks.example.com/ok"],
        transport=recording_transport({}, seen),
    )

    with caplog.at_level(logging.ERROR):
        await notifier.send("assessment_created", {"assessmentTitle": "Python"})

    assert len(seen) == 1
    assert "Failed to deliver assessment_created" in caplog.text
