from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import BulkWriteError, DuplicateKeyError, PyMongoError

from ..core.exceptions import DuplicateResponse, PersistenceError
from ..models import Assessment, Candidate, IntegrityEvent, Question, Response
from ..utils.mongo import serialize_document, to_object_id

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _to_document(model: BaseModel) -> Dict[str, Any]:
    document = model.model_dump()
    document["_id"] = to_object_id(document.pop("id"))
    return document


def _to_model(model_cls: Type[ModelT], document: Optional[Dict[str, Any]]) -> Optional[ModelT]:
    data = serialize_document(document)
    if data is None:
        return None
    return model_cls.model_validate(data)


def _oid_or_none(value: str):
    try:
        return to_object_id(value)
    except ValueError:
        return None


class AssessmentRepository:
    """Motor-backed persistence for assessments, question pools, candidates and responses."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Assessments
    # ------------------------------------------------------------------

    async def create_assessment(self, assessment: Assessment) -> Assessment:
        try:
            await self.db.assessments.insert_one(_to_document(assessment))
        except PyMongoError as exc:
            logger.exception("Failed to insert assessment: %s", exc)
            raise PersistenceError("Failed to save assessment") from exc
        return assessment

    async def get_assessment(self, assessment_id: str) -> Optional[Assessment]:
        oid = _oid_or_none(assessment_id)
        if oid is None:
            return None
        return _to_model(Assessment, await self.db.assessments.find_one({"_id": oid}))

    async def get_assessment_by_token(self, share_token: str) -> Optional[Assessment]:
        return _to_model(Assessment, await self.db.assessments.find_one({"shareToken": share_token}))

    async def list_assessments_for_owner(self, user_id: str, email: Optional[str]) -> List[Assessment]:
        clauses: List[Dict[str, Any]] = [{"recruiterId": user_id}]
        if email:
            clauses.append({"recruiterId": None, "creatorEmail": email})
        cursor = self.db.assessments.find({"$or": clauses}).sort("createdAt", DESCENDING)
        return [_to_model(Assessment, doc) async for doc in cursor]

    async def claim_assessments_by_email(self, email: str, user_id: str, claimed_at: datetime) -> int:
        try:
            result = await self.db.assessments.update_many(
                {"creatorEmail": email, "recruiterId": None},
                {"$set": {"recruiterId": user_id, "claimedAt": claimed_at}},
            )
        except PyMongoError as exc:
            logger.exception("Failed to claim assessments for %s: %s", email, exc)
            raise PersistenceError("Failed to claim assessments") from exc
        return result.modified_count

    # ------------------------------------------------------------------
    # Question pool
    # ------------------------------------------------------------------

    async def claim_pool_generation(self, assessment_id: str, started_at: datetime, stale_before: datetime) -> bool:
        """Mark the assessment as generating unless another live generation holds it."""
        oid = _oid_or_none(assessment_id)
        if oid is None:
            return False
        try:
            document = await self.db.assessments.find_one_and_update(
                {
                    "_id": oid,
                    "$or": [
                        {"generationStartedAt": None},
                        {"generationStartedAt": {"$lt": stale_before}},
                    ],
                },
                {"$set": {"generationStartedAt": started_at}},
            )
        except PyMongoError as exc:
            logger.exception("Failed to claim pool generation for %s: %s", assessment_id, exc)
            raise PersistenceError("Failed to start question generation") from exc
        return document is not None

    async def release_pool_generation(self, assessment_id: str, started_at: datetime) -> None:
        try:
            await self.db.assessments.update_one(
                {"_id": to_object_id(assessment_id), "generationStartedAt": started_at},
                {"$set": {"generationStartedAt": None}},
            )
        except PyMongoError as exc:
            logger.exception("Failed to release pool generation for %s: %s", assessment_id, exc)
            raise PersistenceError("Failed to release question generation") from exc

    async def insert_question_batch(self, assessment_id: str, questions: Sequence[Question]) -> None:
        """Insert the whole pool or nothing."""
        documents = [_to_document(question) for question in questions]
        try:
            await self.db.questions.insert_many(documents, ordered=True)
        except (BulkWriteError, PyMongoError) as exc:
            logger.error("Question batch insert failed for assessment %s: %s", assessment_id, exc)
            try:
                # Only this batch, a concurrent writer may own the rest
                await self.db.questions.delete_many({"_id": {"$in": [doc["_id"] for doc in documents]}})
            except PyMongoError as cleanup_exc:
                logger.error("Cleanup of partial question batch failed for %s: %s", assessment_id, cleanup_exc)
            raise PersistenceError("Failed to save generated questions") from exc

    async def count_questions(self, assessment_id: str) -> int:
        return await self.db.questions.count_documents({"assessmentId": assessment_id})

    async def list_questions(self, assessment_id: str) -> List[Question]:
        cursor = self.db.questions.find({"assessmentId": assessment_id}).sort("position", ASCENDING)
        return [_to_model(Question, doc) async for doc in cursor]

    async def get_questions_by_ids(self, question_ids: Sequence[str]) -> List[Question]:
        oids = [oid for oid in (_oid_or_none(qid) for qid in question_ids) if oid is not None]
        by_id: Dict[str, Question] = {}
        async for doc in self.db.questions.find({"_id": {"$in": oids}}):
            question = _to_model(Question, doc)
            by_id[question.id] = question
        return [by_id[qid] for qid in question_ids if qid in by_id]

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    async def create_candidate(self, candidate: Candidate) -> Candidate:
        try:
            await self.db.candidates.insert_one(_to_document(candidate))
        except PyMongoError as exc:
            logger.exception("Failed to insert candidate: %s", exc)
            raise PersistenceError("Failed to start the assessment") from exc
        return candidate

    async def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        oid = _oid_or_none(candidate_id)
        if oid is None:
            return None
        return _to_model(Candidate, await self.db.candidates.find_one({"_id": oid}))

    async def list_candidates(self, assessment_id: str) -> List[Candidate]:
        cursor = self.db.candidates.find({"assessmentId": assessment_id}).sort("createdAt", DESCENDING)
        return [_to_model(Candidate, doc) async for doc in cursor]

    async def count_candidates(self, assessment_id: str) -> int:
        return await self.db.candidates.count_documents({"assessmentId": assessment_id})

    async def advance_candidate(
        self, candidate_id: str, expected_index: int, question_started_at: datetime
    ) -> bool:
        """Move the cursor one step if it still points at ``expected_index``."""
        try:
            result = await self.db.candidates.update_one(
                {"_id": to_object_id(candidate_id), "currentIndex": expected_index, "completedAt": None},
                {"$set": {"currentIndex": expected_index + 1, "questionStartedAt": question_started_at}},
            )
        except PyMongoError as exc:
            logger.exception("Failed to advance candidate %s: %s", candidate_id, exc)
            raise PersistenceError("Failed to advance to the next question") from exc
        return result.modified_count == 1

    async def complete_candidate(
        self, candidate_id: str, completed_at: datetime, score: Optional[int], reason: str
    ) -> bool:
        """Set the completion fields once. Returns False when the candidate was already completed."""
        try:
            result = await self.db.candidates.update_one(
                {"_id": to_object_id(candidate_id), "completedAt": None},
                {"$set": {"completedAt": completed_at, "totalScore": score, "completionReason": reason}},
            )
        except PyMongoError as exc:
            logger.exception("Failed to complete candidate %s: %s", candidate_id, exc)
            raise PersistenceError("Failed to save the assessment result") from exc
        return result.modified_count == 1

    async def set_candidate_analysis(self, candidate_id: str, analysis: str) -> None:
        try:
            await self.db.candidates.update_one(
                {"_id": to_object_id(candidate_id)},
                {"$set": {"psychometricAnalysis": analysis}},
            )
        except PyMongoError as exc:
            logger.exception("Failed to save analysis for candidate %s: %s", candidate_id, exc)
            raise PersistenceError("Failed to save the psychometric analysis") from exc

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    async def insert_response(self, response: Response) -> Response:
        try:
            await self.db.responses.insert_one(_to_document(response))
        except DuplicateKeyError as exc:
            raise DuplicateResponse() from exc
        except PyMongoError as exc:
            logger.exception("Failed to insert response for candidate %s: %s", response.candidateId, exc)
            raise PersistenceError("Failed to record the answer") from exc
        return response

    async def list_responses(self, candidate_id: str) -> List[Response]:
        cursor = self.db.responses.find({"candidateId": candidate_id}).sort("answeredAt", ASCENDING)
        return [_to_model(Response, doc) async for doc in cursor]

    # ------------------------------------------------------------------
    # Integrity events
    # ------------------------------------------------------------------

    async def record_integrity_event(self, event: IntegrityEvent) -> IntegrityEvent:
        try:
            await self.db.integrity_events.insert_one(_to_document(event))
        except PyMongoError as exc:
            logger.exception("Failed to record integrity event for %s: %s", event.candidateId, exc)
            raise PersistenceError("Failed to record integrity event") from exc
        return event

    async def list_integrity_events(self, candidate_id: str) -> List[IntegrityEvent]:
        cursor = self.db.integrity_events.find({"candidateId": candidate_id}).sort("occurredAt", ASCENDING)
        return [_to_model(IntegrityEvent, doc) async for doc in cursor]
