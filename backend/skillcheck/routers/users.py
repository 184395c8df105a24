from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..core.dependencies import get_current_user, get_repository
from ..core.exceptions import ValidationError
from ..db.repository import AssessmentRepository
from ..utils.responses import success_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/me")
async def get_me(current_user: Dict[str, Any] = Depends(get_current_user)):
    return success_response("User profile fetched successfully", current_user)


@router.post("/me/claim-assessments")
async def claim_assessments(
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: AssessmentRepository = Depends(get_repository),
):
    """Attach assessments created anonymously with this user's email to the account."""
    email = current_user.get("email")
    if not email:
        raise ValidationError("The access token carries no email to claim assessments with")

    claimed = await repository.claim_assessments_by_email(email, current_user["id"], datetime.now(timezone.utc))
    logger.info(f"User {current_user['id']} claimed {claimed} assessment(s) created as {email}")
    return success_response(f"{claimed} assessment(s) claimed", {"claimed": claimed})
