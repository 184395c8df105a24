from __future__ import annotations

from fastapi import status


class AssessmentError(Exception):
    """Base class for every error the assessment core raises on purpose."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "assessment_error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class GenerationError(AssessmentError):
    """Question generation failed."""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "generation_error"


class GenerationUnavailable(GenerationError):
    """Question authoring service is unavailable."""

    code = "generation_unavailable"


class GenerationMalformed(GenerationError):
    """Question authoring service returned an unusable payload."""

    code = "generation_malformed"


class GenerationInsufficient(GenerationError):
    """Question authoring service returned too few questions."""

    code = "generation_insufficient"


class PoolNotReady(AssessmentError):
    """Assessment questions are still being prepared."""

    status_code = status.HTTP_409_CONFLICT
    code = "pool_not_ready"


class PoolAlreadyGenerated(AssessmentError):
    """Assessment already has a question pool."""

    status_code = status.HTTP_409_CONFLICT
    code = "pool_already_generated"


class NotFound(AssessmentError):
    """Resource not found."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class PersistenceError(AssessmentError):
    """A write to the assessment store failed."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "persistence_error"


class DuplicateResponse(AssessmentError):
    """A response for this candidate and question already exists."""

    status_code = status.HTTP_409_CONFLICT
    code = "duplicate_response"


class AccessDenied(AssessmentError):
    """You do not have access to this assessment."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "access_denied"


class ValidationError(AssessmentError):
    """Invalid input."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class DeviceNotAllowed(AssessmentError):
    """This assessment can only be taken from a mobile device."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "device_not_allowed"


class SessionConflict(AssessmentError):
    """The session is not in a state that accepts this action."""

    status_code = status.HTTP_409_CONFLICT
    code = "session_conflict"
