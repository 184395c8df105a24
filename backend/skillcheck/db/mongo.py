from __future__ import annotations

import logging
from typing import AsyncGenerator

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING

from ..core.config import get_settings

logger = logging.getLogger(__name__)

_client: AsyncIOMotorClient | None = None
_db: AsyncIOMotorDatabase | None = None


async def connect_to_mongo() -> None:
    global _client, _db
    settings = get_settings()
    if _client is None:
        _client = AsyncIOMotorClient(
            settings.mongo_uri,
            serverSelectionTimeoutMS=5000,  # 5 seconds to find a server
            connectTimeoutMS=10000,
            socketTimeoutMS=30000,
            tz_aware=True,  # question timers compare aware UTC datetimes
        )
        _db = _client[settings.mongo_db]
        # Test the connection
        await _client.admin.command("ping")


async def close_mongo_connection() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
        _client = None
        _db = None


def get_database() -> AsyncIOMotorDatabase:
    if _db is None:
        raise RuntimeError("MongoDB has not been initialized. Call connect_to_mongo() on startup.")
    return _db


async def get_db() -> AsyncGenerator[AsyncIOMotorDatabase, None]:
    yield get_database()


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    # Share tokens are the only public handle on an assessment
    await db.assessments.create_index("shareToken", unique=True)
    await db.assessments.create_index("recruiterId")
    await db.assessments.create_index("creatorEmail")

    # One question per ordinal within a pool
    await db.questions.create_index([("assessmentId", ASCENDING), ("position", ASCENDING)], unique=True)

    await db.candidates.create_index("assessmentId")
    await db.candidates.create_index([("assessmentId", ASCENDING), ("createdAt", ASCENDING)])

    # One response per presented question
    await db.responses.create_index([("candidateId", ASCENDING), ("questionId", ASCENDING)], unique=True)
    await db.responses.create_index([("candidateId", ASCENDING), ("answeredAt", ASCENDING)])

    await db.integrity_events.create_index("candidateId")
    await db.integrity_events.create_index([("assessmentId", ASCENDING), ("candidateId", ASCENDING)])

    logger.info("MongoDB indexes ensured")
