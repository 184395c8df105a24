from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..db.mongo import get_db
from ..db.repository import AssessmentRepository
from ..services.analysis import PsychometricAnalyzer
from ..services.integrity import DevicePolicy, IntegrityMonitor
from ..services.notifications import WebhookNotifier
from ..services.question_pool import QuestionPoolGenerator
from ..services.scoring import ScoringFinalizer
from ..services.session_engine import SessionEngine
from .config import Settings, get_settings
from .security import decode_access_token

bearer_scheme = HTTPBearer(auto_error=False)


def _user_from_credentials(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[Dict[str, Any]]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        return None
    email = payload.get("email")
    return {
        "id": str(payload["sub"]),
        "email": email.strip().lower() if isinstance(email, str) else None,
        "role": payload.get("role"),
    }


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Dict[str, Any]]:
    return _user_from_credentials(credentials)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Dict[str, Any]:
    user = _user_from_credentials(credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_repository(db: AsyncIOMotorDatabase = Depends(get_db)) -> AssessmentRepository:
    return AssessmentRepository(db)


def get_notifier(settings: Settings = Depends(get_settings)) -> WebhookNotifier:
    return WebhookNotifier(
        settings.notification_urls,
        timeout=settings.notification_timeout_seconds,
        max_redirects=settings.notification_max_redirects,
    )


def get_finalizer(
    repository: AssessmentRepository = Depends(get_repository),
    notifier: WebhookNotifier = Depends(get_notifier),
) -> ScoringFinalizer:
    analyzer = PsychometricAnalyzer(repository)
    return ScoringFinalizer(repository, analyzer=analyzer.analyze, notifier=notifier)


def get_pool_generator(
    repository: AssessmentRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> QuestionPoolGenerator:
    return QuestionPoolGenerator(
        repository,
        pool_size=settings.pool_size,
        min_pool_size=settings.min_pool_size,
        claim_timeout_seconds=settings.generation_claim_timeout_seconds,
    )


def get_session_engine(
    repository: AssessmentRepository = Depends(get_repository),
    finalizer: ScoringFinalizer = Depends(get_finalizer),
    settings: Settings = Depends(get_settings),
) -> SessionEngine:
    return SessionEngine(
        repository,
        finalizer,
        device_policy=DevicePolicy(require_mobile=settings.require_mobile_device),
        assignment_size=settings.assignment_size,
        period_seconds=settings.question_period_seconds,
        grace_seconds=settings.answer_grace_seconds,
    )


def get_integrity_monitor(
    repository: AssessmentRepository = Depends(get_repository),
    finalizer: ScoringFinalizer = Depends(get_finalizer),
) -> IntegrityMonitor:
    return IntegrityMonitor(repository, finalizer)
