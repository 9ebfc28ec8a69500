# routes/tests.py
from fastapi import APIRouter, HTTPException, Depends
from datetime import datetime
from typing import List
import uuid
import logging

from database import get_db, clean
from models.test import TestCreate, TestUpdate, TestCase, TestCaseUpdate, TestCaseOut
from models.submission import SubmissionCreate
from .auth import get_current_user, require_assessor
from .executor import CodeExecutor, get_executor, check_language, mask_hidden
from .attempts import NotInvitedError, check_test_in_assessment, check_window, reserve_attempt
from .invitations import is_participant, advance_status

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tests", tags=["tests"])


def with_case_ids(cases: List[TestCase]) -> List[dict]:
    return [{"id": str(uuid.uuid4()), **case.model_dump()} for case in cases]


async def can_view_test(db, test: dict, user: dict) -> bool:
    """Public tests, the creator, any assessor, and accepted participants of an assessment that includes it."""
    if test.get("isPublic") or test["createdBy"] == user["id"] or user["role"] == "assessor":
        return True
    assessments = await db.assessments.find({"tests": test["id"]}).to_list(None)
    return any(is_participant(a, user) for a in assessments)


def test_view(test: dict, user: dict) -> dict:
    """Strip hidden test cases for anyone but the creator."""
    test = clean(test)
    if test["createdBy"] != user["id"]:
        test["testCases"] = [c for c in test.get("testCases", []) if not c.get("isHidden")]
    return test


async def get_owned_test(db, test_id: str, user: dict) -> dict:
    test = await db.tests.find_one({"id": test_id})
    if not test:
        raise HTTPException(404, "Test not found")
    if test["createdBy"] != user["id"]:
        logger.warning(f"User {user['id']} is not the creator of test {test_id}")
        raise HTTPException(403, "Access denied. Only the creator can modify this test.")
    return test


@router.get("/public")
async def get_public_tests(db=Depends(get_db)):
    tests = await db.tests.find({"isPublic": True}).sort("createdAt", -1).to_list(None)
    return [
        {**clean(t), "testCases": [c for c in t.get("testCases", []) if not c.get("isHidden")]}
        for t in tests
    ]


@router.get("")
async def get_all_tests(current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    tests = await db.tests.find().sort("createdAt", -1).to_list(None)
    return [test_view(t, current_user) for t in tests]


@router.get("/my-tests")
async def get_my_tests(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    tests = await db.tests.find({"createdBy": current_user["id"]}).sort("createdAt", -1).to_list(None)
    return [clean(t) for t in tests]


@router.get("/{test_id}")
async def get_test(test_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    test = await db.tests.find_one({"id": test_id})
    if not test:
        raise HTTPException(404, "Test not found")
    if not await can_view_test(db, test, current_user):
        raise HTTPException(403, "Access denied")
    return test_view(test, current_user)


@router.post("", status_code=201)
async def create_test(test: TestCreate, current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    logger.info(f"Creating test '{test.title}' for user {current_user['id']}")
    now = datetime.utcnow()
    test_dict = test.model_dump(exclude={"testCases"})
    test_dict["id"] = str(uuid.uuid4())
    test_dict["testCases"] = with_case_ids(test.testCases)
    test_dict["createdBy"] = current_user["id"]
    test_dict["createdAt"] = now
    test_dict["updatedAt"] = now
    await db.tests.insert_one(test_dict)
    return {"message": "Test created successfully", "test": clean(test_dict)}


@router.put("/{test_id}")
async def update_test(test_id: str, update_data: TestUpdate, current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    await get_owned_test(db, test_id, current_user)
    update_dict = update_data.model_dump(exclude_unset=True, exclude={"testCases"})
    if update_data.testCases is not None:
        update_dict["testCases"] = with_case_ids(update_data.testCases)
    update_dict["updatedAt"] = datetime.utcnow()
    await db.tests.update_one({"id": test_id}, {"$set": update_dict})
    updated = await db.tests.find_one({"id": test_id})
    return {"message": "Test updated successfully", "test": clean(updated)}


@router.delete("/{test_id}")
async def delete_test(test_id: str, current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    await get_owned_test(db, test_id, current_user)
    # Every assessment keeps at least one test
    sole = await db.assessments.find({"tests": [test_id]}).to_list(None)
    if sole:
        titles = ", ".join(a["title"] for a in sole)
        raise HTTPException(400, f"Test is the only test of assessment(s): {titles}. Remove or update them first.")
    deleted = await db.submissions.delete_many({"testId": test_id})
    await db.attempts.delete_many({"testId": test_id})
    await db.assessments.update_many({"tests": test_id}, {"$pull": {"tests": test_id}})
    await db.tests.delete_one({"id": test_id})
    logger.info(f"Deleted test {test_id} and {deleted.deleted_count} submission(s)")
    return {"message": "Test deleted successfully", "deletedSubmissions": deleted.deleted_count}


@router.get("/{test_id}/test-cases", response_model=List[TestCaseOut])
async def get_test_cases(test_id: str, current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    test = await get_owned_test(db, test_id, current_user)
    return test.get("testCases", [])


@router.post("/{test_id}/test-cases", status_code=201, response_model=TestCaseOut)
async def add_test_case(test_id: str, case: TestCase, current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    await get_owned_test(db, test_id, current_user)
    case_dict = with_case_ids([case])[0]
    await db.tests.update_one(
        {"id": test_id},
        {"$push": {"testCases": case_dict}, "$set": {"updatedAt": datetime.utcnow()}},
    )
    return case_dict


@router.put("/{test_id}/test-cases/{case_id}", response_model=TestCaseOut)
async def update_test_case(test_id: str, case_id: str, update_data: TestCaseUpdate, current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    test = await get_owned_test(db, test_id, current_user)
    cases = test.get("testCases", [])
    for case in cases:
        if case["id"] == case_id:
            case.update(update_data.model_dump(exclude_unset=True))
            break
    else:
        raise HTTPException(404, "Test case not found")
    await db.tests.update_one(
        {"id": test_id},
        {"$set": {"testCases": cases, "updatedAt": datetime.utcnow()}},
    )
    return case


@router.delete("/{test_id}/test-cases/{case_id}")
async def delete_test_case(test_id: str, case_id: str, current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    test = await get_owned_test(db, test_id, current_user)
    if not any(c["id"] == case_id for c in test.get("testCases", [])):
        raise HTTPException(404, "Test case not found")
    await db.tests.update_one(
        {"id": test_id},
        {"$pull": {"testCases": {"id": case_id}}, "$set": {"updatedAt": datetime.utcnow()}},
    )
    return {"message": "Test case deleted successfully"}


@router.post("/{test_id}/submissions", status_code=201)
async def submit_code(
    test_id: str,
    body: SubmissionCreate,
    current_user: dict = Depends(get_current_user),
    db=Depends(get_db),
    executor: CodeExecutor = Depends(get_executor),
):
    logger.info(f"Submission for test {test_id} by {current_user['id']}, assessment={body.assessmentId}")
    language = check_language(body.language)
    test = await db.tests.find_one({"id": test_id})
    if not test:
        raise HTTPException(404, "Test not found")
    if not test.get("testCases"):
        raise HTTPException(400, "No test cases found for this test")

    attempts_used = None
    assessment = None
    if body.assessmentId:
        assessment = await db.assessments.find_one({"id": body.assessmentId})
        if not assessment:
            raise HTTPException(404, "Assessment not found")
        if not is_participant(assessment, current_user):
            raise NotInvitedError()
        check_test_in_assessment(assessment, test_id)
        check_window(assessment)
        attempts_used = await reserve_attempt(db, assessment, test_id, current_user["id"])
    elif not await can_view_test(db, test, current_user):
        raise HTTPException(403, "Access denied")

    run = await executor.run_test_cases(body.code, language, test["testCases"], timeout=test.get("timeLimit"))
    summary = run["summary"]
    submission = {
        "id": str(uuid.uuid4()),
        "userId": current_user["id"],
        "testId": test_id,
        "assessmentId": body.assessmentId,
        "code": body.code,
        "language": language,
        "status": summary["status"],
        "testCasesPassed": summary["passedTestCases"],
        "totalTestCases": summary["totalTestCases"],
        "executionTime": summary["executionTime"],
        "memoryUsed": summary["memoryUsed"],
        "testResults": run["results"],
        "submittedAt": datetime.utcnow(),
    }
    await db.submissions.insert_one(submission)

    response = {"message": "Submission created successfully"}
    if assessment:
        await advance_status(db, assessment["id"], current_user, "Started")
        response["attemptsUsed"] = attempts_used
        response["maxAttempts"] = assessment["maxAttempts"]
        response["remainingAttempts"] = max(assessment["maxAttempts"] - attempts_used, 0)

    submission = clean(submission)
    if test["createdBy"] != current_user["id"]:
        submission["testResults"] = mask_hidden(submission["testResults"])
    response["submission"] = submission
    return response


@router.get("/{test_id}/submissions")
async def get_test_submissions(test_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    test = await db.tests.find_one({"id": test_id})
    if not test:
        raise HTTPException(404, "Test not found")
    if test["createdBy"] != current_user["id"]:
        raise HTTPException(403, "Not authorized to view submissions for this test")
    submissions = await db.submissions.find({"testId": test_id}).sort("submittedAt", -1).to_list(None)
    return [clean(s) for s in submissions]
