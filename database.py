# database.py
from datetime import datetime, timezone
from typing import Optional
import logging

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING

import config

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

client = AsyncIOMotorClient(config.MONGODB_URI)
db = client[config.MONGODB_DB]


def get_db():
    return db


async def init_db(database) -> None:
    """Create the indexes the API relies on for lookups and uniqueness."""
    await database.users.create_index("id", unique=True)
    await database.users.create_index("email", unique=True)
    await database.tests.create_index("id", unique=True)
    await database.tests.create_index("createdBy")
    await database.assessments.create_index("id", unique=True)
    await database.assessments.create_index("createdBy")
    await database.submissions.create_index("id", unique=True)
    await database.submissions.create_index([("userId", ASCENDING), ("submittedAt", DESCENDING)])
    await database.submissions.create_index("testId")
    await database.submissions.create_index("assessmentId")
    # One counter per (user, test, assessment); the attempt reservation upsert depends on it
    await database.attempts.create_index(
        [("userId", ASCENDING), ("testId", ASCENDING), ("assessmentId", ASCENDING)],
        unique=True,
    )
    # One final submission per user and assessment
    await database.assessment_results.create_index(
        [("userId", ASCENDING), ("assessmentId", ASCENDING)],
        unique=True,
    )
    await database.notifications.create_index("id", unique=True)
    await database.notifications.create_index("userId")
    logger.info("Database indexes ensured")


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo hands back naive UTC datetimes, so everything is stored that way."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def clean(doc: Optional[dict]) -> Optional[dict]:
    """Drop the Mongo primary key; the API only exposes the string `id`."""
    if doc is None:
        return None
    doc = dict(doc)
    doc.pop("_id", None)
    return doc
