# routes/code.py
from fastapi import APIRouter, HTTPException, Depends
from typing import Optional
import logging

from database import get_db, clean
from models.submission import ExecuteRequest, RunRequest
from .auth import get_current_user
from .executor import CodeExecutor, get_executor, check_language, mask_hidden
from .tests import can_view_test

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/code", tags=["code"])


@router.post("/execute")
async def execute_code(
    body: ExecuteRequest,
    current_user: dict = Depends(get_current_user),
    executor: CodeExecutor = Depends(get_executor),
):
    language = check_language(body.language)
    logger.info(f"Executing {language} code for user {current_user['id']}")
    return await executor.run(body.code, language, body.input)


@router.post("/tests/{test_id}/run")
async def run_test_cases(
    test_id: str,
    body: RunRequest,
    current_user: dict = Depends(get_current_user),
    db=Depends(get_db),
    executor: CodeExecutor = Depends(get_executor),
):
    """Dry run against a test's cases. Nothing is stored and no attempt is used."""
    language = check_language(body.language)
    test = await db.tests.find_one({"id": test_id})
    if not test:
        raise HTTPException(404, "Test not found")
    if not await can_view_test(db, test, current_user):
        raise HTTPException(403, "Access denied")
    if not test.get("testCases"):
        raise HTTPException(400, "No test cases found for this test")
    run = await executor.run_test_cases(body.code, language, test["testCases"], timeout=test.get("timeLimit"))
    if test["createdBy"] != current_user["id"]:
        run["results"] = mask_hidden(run["results"])
    return run


@router.get("/submissions")
async def get_user_submissions(
    assessmentId: Optional[str] = None,
    testId: Optional[str] = None,
    current_user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    query = {"userId": current_user["id"]}
    if assessmentId:
        query["assessmentId"] = assessmentId
    if testId:
        query["testId"] = testId
    submissions = await db.submissions.find(query).sort("submittedAt", -1).to_list(None)
    titles = {}
    result = []
    for submission in submissions:
        if submission["testId"] not in titles:
            test = await db.tests.find_one({"id": submission["testId"]})
            titles[submission["testId"]] = test["title"] if test else None
        submission = clean(submission)
        submission["testTitle"] = titles[submission["testId"]]
        submission["testResults"] = mask_hidden(submission.get("testResults", []))
        result.append(submission)
    return result


@router.get("/submissions/{submission_id}")
async def get_submission(submission_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    submission = await db.submissions.find_one({"id": submission_id})
    if not submission:
        raise HTTPException(404, "Submission not found")

    test = await db.tests.find_one({"id": submission["testId"]})
    is_test_creator = bool(test and test["createdBy"] == current_user["id"])
    is_assessment_creator = False
    if submission.get("assessmentId"):
        assessment = await db.assessments.find_one({"id": submission["assessmentId"]})
        is_assessment_creator = bool(assessment and assessment["createdBy"] == current_user["id"])

    if submission["userId"] != current_user["id"] and not (is_test_creator or is_assessment_creator):
        logger.warning(f"User {current_user['id']} denied access to submission {submission_id}")
        raise HTTPException(403, "Not authorized to view this submission")

    submission = clean(submission)
    if not (is_test_creator or is_assessment_creator):
        submission["testResults"] = mask_hidden(submission.get("testResults", []))
    return submission
