from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Sequence

import httpx

from ..models import Assessment, Candidate

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        ...


class WebhookNotifier:
    """Best-effort JSON webhook delivery. Never raises."""

    def __init__(
        self,
        urls: Sequence[str],
        timeout: float = 10.0,
        max_redirects: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.urls = list(urls)
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.transport = transport

    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        if not self.urls:
            logger.debug(f"[Notify] No webhook configured, dropping {event}")
            return

        body = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat(), **payload}
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            max_redirects=self.max_redirects,
            transport=self.transport,
        ) as client:
            for url in self.urls:
                try:
                    response = await client.post(url, json=body)
                    response.raise_for_status()
                    logger.info(f"[Notify] {event} delivered to {httpx.URL(url).host}")
                except (httpx.HTTPError, httpx.InvalidURL) as exc:
                    logger.error(f"[Notify] Failed to deliver {event} to {url!r}: {exc}")


def assessment_created_payload(assessment: Assessment) -> Dict[str, Any]:
    return {
        "assessmentId": assessment.id,
        "assessmentTitle": assessment.title,
        "assessmentType": assessment.assessmentType,
        "psychometricType": assessment.psychometricType,
        "language": assessment.language,
        "owner": assessment.recruiterId or assessment.creatorEmail,
        "createdAt": assessment.createdAt.isoformat(),
    }


def candidate_completed_payload(assessment: Optional[Assessment], candidate: Candidate) -> Dict[str, Any]:
    total = len(candidate.assignedQuestionIds)
    score = candidate.totalScore
    return {
        "candidateName": candidate.fullName,
        "candidateEmail": candidate.email,
        "assessmentTitle": assessment.title if assessment else None,
        "assessmentType": assessment.assessmentType if assessment else None,
        "psychometricType": assessment.psychometricType if assessment else None,
        "score": score,
        "totalQuestions": total,
        "scoreDisplay": f"{score}/{total}" if score is not None else None,
        "completionReason": candidate.completionReason,
        "completedAt": candidate.completedAt.isoformat() if candidate.completedAt else None,
    }
