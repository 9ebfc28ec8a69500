# routes/attempts.py
"""Attempt accounting for assessment submissions.

One record per (userId, testId, assessmentId) in the ``attempts`` collection
holds ``attemptsUsed``. Reserving an attempt is a single conditional
``$inc`` on that record, so concurrent submits cannot both slip under
``maxAttempts``. A row in ``assessment_results`` means the user has
finalized the assessment. Finalizing locks every attempt record of the user
in that assessment before that row is written.
"""
from datetime import datetime
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
import uuid
import logging

from database import clean
from .executor import ACCEPTED

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

NOT_ATTEMPTED = "NotAttempted"
IN_PROGRESS = "InProgress"
EXHAUSTED = "Exhausted"
SUBMITTED = "Submitted"


class AssessmentWorkflowError(Exception):
    status_code = 400
    code = "ASSESSMENT_ERROR"
    default_message = "Assessment request rejected"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotInvitedError(AssessmentWorkflowError):
    status_code = 403
    code = "NOT_INVITED"
    default_message = "You are not a participant of this assessment"


class TestNotInAssessmentError(AssessmentWorkflowError):
    status_code = 403
    code = "TEST_NOT_IN_ASSESSMENT"
    default_message = "This test is not part of the assessment"


class AssessmentClosedError(AssessmentWorkflowError):
    status_code = 403
    code = "ASSESSMENT_CLOSED"
    default_message = "Assessment is not open"


class AssessmentAlreadySubmittedError(AssessmentWorkflowError):
    status_code = 409
    code = "ASSESSMENT_SUBMITTED"
    default_message = "Assessment has already been submitted"


class AttemptLimitReachedError(AssessmentWorkflowError):
    status_code = 409
    code = "ATTEMPT_LIMIT_REACHED"
    default_message = "Maximum attempts reached for this test"


def attempt_key(user_id: str, test_id: str, assessment_id: str) -> dict:
    return {"userId": user_id, "testId": test_id, "assessmentId": assessment_id}


def check_test_in_assessment(assessment: dict, test_id: str) -> None:
    if test_id not in assessment.get("tests", []):
        raise TestNotInAssessmentError()


def check_window(assessment: dict, now: datetime = None) -> None:
    now = now or datetime.utcnow()
    if now < assessment["startTime"]:
        raise AssessmentClosedError("Assessment has not started yet")
    if now > assessment["endTime"]:
        raise AssessmentClosedError("Assessment has ended")


async def is_submitted(db, user_id: str, assessment_id: str) -> bool:
    result = await db.assessment_results.find_one({"userId": user_id, "assessmentId": assessment_id})
    return result is not None


async def reserve_attempt(db, assessment: dict, test_id: str, user_id: str) -> int:
    """Consume one attempt and return the new ``attemptsUsed``."""
    key = attempt_key(user_id, test_id, assessment["id"])
    if await is_submitted(db, user_id, assessment["id"]):
        raise AssessmentAlreadySubmittedError()

    try:
        await db.attempts.update_one(
            key,
            {"$setOnInsert": {"attemptsUsed": 0, "locked": False, "lastAttemptAt": None}},
            upsert=True,
        )
    except DuplicateKeyError:
        # Another request created the record first
        pass

    record = await db.attempts.find_one_and_update(
        {**key, "attemptsUsed": {"$lt": assessment["maxAttempts"]}, "locked": {"$ne": True}},
        {"$inc": {"attemptsUsed": 1}, "$set": {"lastAttemptAt": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if record is None:
        current = await db.attempts.find_one(key)
        if current and current.get("locked"):
            raise AssessmentAlreadySubmittedError()
        logger.info(f"Attempt limit reached for user {user_id}, test {test_id}, assessment {assessment['id']}")
        raise AttemptLimitReachedError(
            f"Maximum attempts ({assessment['maxAttempts']}) reached for this test"
        )
    return record["attemptsUsed"]


async def get_attempt_status(db, assessment: dict, test_id: str, user_id: str) -> dict:
    record = await db.attempts.find_one(attempt_key(user_id, test_id, assessment["id"]))
    used = record["attemptsUsed"] if record else 0
    max_attempts = assessment["maxAttempts"]
    submitted = await is_submitted(db, user_id, assessment["id"])
    if submitted:
        state = SUBMITTED
    elif used == 0:
        state = NOT_ATTEMPTED
    elif used < max_attempts:
        state = IN_PROGRESS
    else:
        state = EXHAUSTED
    return {
        "assessmentId": assessment["id"],
        "testId": test_id,
        "userId": user_id,
        "attemptsUsed": used,
        "maxAttempts": max_attempts,
        "remainingAttempts": max(max_attempts - used, 0),
        "assessmentSubmitted": submitted,
        "state": state,
    }


async def summarize_assessment(db, assessment: dict, user_id: str) -> dict:
    """Score the user's best submission per test."""
    tests = []
    for test_id in assessment.get("tests", []):
        submissions = await db.submissions.find(
            {"userId": user_id, "testId": test_id, "assessmentId": assessment["id"]}
        ).to_list(None)
        record = await db.attempts.find_one(attempt_key(user_id, test_id, assessment["id"]))
        best = max(submissions, key=lambda s: s["testCasesPassed"], default=None)
        tests.append({
            "testId": test_id,
            "attemptsUsed": record["attemptsUsed"] if record else 0,
            "bestTestCasesPassed": best["testCasesPassed"] if best else 0,
            "totalTestCases": best["totalTestCases"] if best else 0,
            "passed": any(s["status"] == ACCEPTED for s in submissions),
        })
    scores = [
        t["bestTestCasesPassed"] / t["totalTestCases"] if t["totalTestCases"] else 0
        for t in tests
    ]
    return {
        "tests": tests,
        "totalTests": len(tests),
        "totalTestsPassed": sum(1 for t in tests if t["passed"]),
        "overallScore": round(sum(scores) / len(scores) * 100, 2) if scores else 0.0,
    }


async def submit_assessment(db, assessment: dict, user_id: str) -> dict:
    """Finalize the assessment for ``user_id``. Allowed once.

    Attempt records are locked before the summary is taken, so no reservation
    can succeed once the result row exists.
    """
    for test_id in assessment.get("tests", []):
        try:
            await db.attempts.update_one(
                attempt_key(user_id, test_id, assessment["id"]),
                {"$set": {"locked": True}, "$setOnInsert": {"attemptsUsed": 0, "lastAttemptAt": None}},
                upsert=True,
            )
        except DuplicateKeyError:
            await db.attempts.update_one(
                attempt_key(user_id, test_id, assessment["id"]),
                {"$set": {"locked": True}},
            )
    summary = await summarize_assessment(db, assessment, user_id)
    result = {
        "id": str(uuid.uuid4()),
        "userId": user_id,
        "assessmentId": assessment["id"],
        "submittedAt": datetime.utcnow(),
        **summary,
    }
    try:
        await db.assessment_results.insert_one(result)
    except DuplicateKeyError:
        raise AssessmentAlreadySubmittedError()
    logger.info(f"User {user_id} submitted assessment {assessment['id']} with score {result['overallScore']}")
    return clean(result)
