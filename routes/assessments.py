# routes/assessments.py
from fastapi import APIRouter, HTTPException, Depends
from datetime import datetime
from typing import List, Optional
import uuid
import logging

from database import get_db, clean
from models.assessment import AssessmentCreate, AssessmentUpdate, InviteRequest, AttemptStatus
from .auth import get_current_user, require_assessor, require_assessee
from .executor import mask_hidden
from .attempts import (
    NotInvitedError,
    check_test_in_assessment,
    get_attempt_status,
    is_submitted,
    submit_assessment as finalize_assessment,
)
from .invitations import (
    accept,
    add_invitations,
    advance_status,
    find_invitation,
    is_participant,
    normalize_invited,
    notify_invited,
    save_invitations,
)

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/assessments", tags=["assessments"])

SUMMARY_FIELDS = ("id", "title", "description", "startTime", "endTime", "maxAttempts", "isPublic", "createdBy", "createdAt")


async def validate_test_ids(db, test_ids: List[str]) -> None:
    found = await db.tests.find({"id": {"$in": test_ids}}).to_list(None)
    missing = set(test_ids) - {t["id"] for t in found}
    if missing:
        raise HTTPException(400, f"Tests not found: {', '.join(sorted(missing))}")


async def get_test_details(db, test_ids: List[str], include_hidden: bool) -> List[dict]:
    tests = await db.tests.find({"id": {"$in": test_ids}}).to_list(None)
    by_id = {t["id"]: clean(t) for t in tests}
    details = []
    for test_id in test_ids:
        test = by_id.get(test_id)
        if not test:
            continue
        if not include_hidden:
            test["testCases"] = [c for c in test.get("testCases", []) if not c.get("isHidden")]
        details.append(test)
    return details


async def get_assessment_or_404(db, assessment_id: str) -> dict:
    assessment = await db.assessments.find_one({"id": assessment_id})
    if not assessment:
        raise HTTPException(404, "Assessment not found")
    return assessment


async def get_owned_assessment(db, assessment_id: str, user: dict) -> dict:
    assessment = await get_assessment_or_404(db, assessment_id)
    if assessment["createdBy"] != user["id"]:
        logger.warning(f"User {user['id']} is not the creator of assessment {assessment_id}")
        raise HTTPException(403, "Access denied. Only the creator can manage this assessment.")
    return assessment


def summary(assessment: dict) -> dict:
    return {field: assessment.get(field) for field in SUMMARY_FIELDS}


@router.get("/my-assessments")
async def get_my_assessments(current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    assessments = await db.assessments.find({"createdBy": current_user["id"]}).sort("createdAt", -1).to_list(None)
    return [clean(a) for a in assessments]


@router.get("/assigned")
async def get_assigned_assessments(current_user: dict = Depends(require_assessee), db=Depends(get_db)):
    logger.info(f"Fetching assigned assessments for {current_user['id']}")
    assessments = await db.assessments.find({
        "$or": [
            {"invitedUsers.userId": current_user["id"]},
            {"invitedUsers.email": current_user["email"]},
        ]
    }).sort("startTime", 1).to_list(None)
    result = []
    for assessment in assessments:
        _, entry = find_invitation(assessment, current_user)
        result.append({
            **summary(assessment),
            "testCount": len(assessment.get("tests", [])),
            "status": entry["status"],
            "accepted": entry.get("accepted", False),
            "assessmentSubmitted": await is_submitted(db, current_user["id"], assessment["id"]),
        })
    return result


@router.post("", status_code=201)
async def create_assessment(assessment: AssessmentCreate, current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    logger.info(f"Creating assessment '{assessment.title}' for user {current_user['id']}")
    await validate_test_ids(db, assessment.tests)

    now = datetime.utcnow()
    assessment_dict = assessment.model_dump(exclude={"invitedUsers"})
    assessment_dict["id"] = str(uuid.uuid4())
    assessment_dict["createdBy"] = current_user["id"]
    assessment_dict["createdAt"] = now
    assessment_dict["updatedAt"] = now

    invited = await add_invitations(db, assessment_dict, normalize_invited(assessment.invitedUsers), [])
    assessment_dict["invitedUsers"] = invited["entries"]
    await db.assessments.insert_one(assessment_dict)
    await notify_invited(db, assessment_dict, invited["notify"])

    return {"message": "Assessment created successfully", "assessment": clean(assessment_dict)}


@router.get("/{assessment_id}")
async def get_assessment(assessment_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    assessment = await get_assessment_or_404(db, assessment_id)

    if assessment["createdBy"] == current_user["id"]:
        return {
            **clean(assessment),
            "testDetails": await get_test_details(db, assessment["tests"], include_hidden=True),
        }

    _, entry = find_invitation(assessment, current_user)
    if entry and entry.get("accepted"):
        return {
            **summary(assessment),
            "tests": assessment["tests"],
            "testDetails": await get_test_details(db, assessment["tests"], include_hidden=False),
            "invitation": entry,
            "assessmentSubmitted": await is_submitted(db, current_user["id"], assessment_id),
        }
    if entry or assessment.get("isPublic"):
        # Enough to decide whether to accept; tests stay hidden until then
        return {**summary(assessment), "invitation": entry, "accepted": False}

    raise HTTPException(403, "Access denied")


@router.put("/{assessment_id}")
async def update_assessment(assessment_id: str, update_data: AssessmentUpdate, current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    assessment = await get_owned_assessment(db, assessment_id, current_user)
    update_dict = update_data.model_dump(exclude_unset=True, exclude={"invitedUsers"})
    if "tests" in update_dict and update_dict["tests"] is None:
        raise HTTPException(400, "At least one test is required")

    start = update_dict.get("startTime") or assessment["startTime"]
    end = update_dict.get("endTime") or assessment["endTime"]
    if start >= end:
        raise HTTPException(400, "End time must be after start time")
    if update_dict.get("tests"):
        await validate_test_ids(db, update_dict["tests"])
    if update_dict.get("maxAttempts"):
        top = await db.attempts.find({"assessmentId": assessment_id}).sort("attemptsUsed", -1).limit(1).to_list(1)
        used = top[0]["attemptsUsed"] if top else 0
        if update_dict["maxAttempts"] < used:
            raise HTTPException(400, f"maxAttempts cannot be lower than attempts already used ({used})")

    notify = []
    if update_data.invitedUsers is not None:
        emails = normalize_invited(update_data.invitedUsers)
        # Entries still listed keep their acceptance and progress
        await db.assessments.update_one(
            {"id": assessment_id},
            {"$pull": {"invitedUsers": {"email": {"$nin": emails}}}},
        )
        assessment = await get_assessment_or_404(db, assessment_id)
        invited = await add_invitations(db, assessment, emails, [])
        await save_invitations(db, assessment_id, invited)
        notify = invited["notify"]

    update_dict = {k: v for k, v in update_dict.items() if v is not None}
    update_dict["updatedAt"] = datetime.utcnow()
    await db.assessments.update_one({"id": assessment_id}, {"$set": update_dict})
    updated = await db.assessments.find_one({"id": assessment_id})
    await notify_invited(db, updated, notify)

    return {
        "message": "Assessment updated successfully",
        "assessment": {
            **clean(updated),
            "testDetails": await get_test_details(db, updated["tests"], include_hidden=True),
        },
    }


@router.delete("/{assessment_id}")
async def delete_assessment(assessment_id: str, current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    assessment = await get_owned_assessment(db, assessment_id, current_user)
    deleted = await db.submissions.delete_many({"assessmentId": assessment_id})
    await db.attempts.delete_many({"assessmentId": assessment_id})
    await db.assessment_results.delete_many({"assessmentId": assessment_id})
    await db.notifications.delete_many({"assessmentId": assessment_id})
    await db.assessments.delete_one({"id": assessment_id})
    logger.info(f"Deleted assessment {assessment_id} and {deleted.deleted_count} submission(s)")
    return {
        "message": "Assessment deleted successfully",
        "deletedAssessment": {"id": assessment["id"], "title": assessment["title"]},
    }


@router.post("/{assessment_id}/tests/{test_id}")
async def add_test_to_assessment(assessment_id: str, test_id: str, current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    await get_owned_assessment(db, assessment_id, current_user)
    if not await db.tests.find_one({"id": test_id}):
        raise HTTPException(404, "Test not found")
    await db.assessments.update_one(
        {"id": assessment_id},
        {"$addToSet": {"tests": test_id}, "$set": {"updatedAt": datetime.utcnow()}},
    )
    updated = await db.assessments.find_one({"id": assessment_id})
    return {"message": "Test added to assessment successfully", "assessment": clean(updated)}


@router.delete("/{assessment_id}/tests/{test_id}")
async def remove_test_from_assessment(assessment_id: str, test_id: str, current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    assessment = await get_owned_assessment(db, assessment_id, current_user)
    if test_id not in assessment.get("tests", []):
        raise HTTPException(404, "Test is not part of this assessment")
    if len(assessment["tests"]) == 1:
        raise HTTPException(400, "At least one test is required")
    await db.assessments.update_one(
        {"id": assessment_id},
        {"$pull": {"tests": test_id}, "$set": {"updatedAt": datetime.utcnow()}},
    )
    updated = await db.assessments.find_one({"id": assessment_id})
    return {"message": "Test removed from assessment successfully", "assessment": clean(updated)}


@router.post("/{assessment_id}/invite")
async def invite_users(assessment_id: str, request: InviteRequest, current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    assessment = await get_owned_assessment(db, assessment_id, current_user)
    emails = request.email_list()
    if not emails and not request.userIds:
        raise HTTPException(400, "Provide emails or userIds to invite")

    invited = await add_invitations(db, assessment, emails, request.userIds)
    await save_invitations(db, assessment_id, invited)
    await db.assessments.update_one({"id": assessment_id}, {"$set": {"updatedAt": datetime.utcnow()}})
    await notify_invited(db, assessment, invited["notify"])
    logger.info(
        f"Assessment {assessment_id}: invited {invited['invitedCount']} user(s), "
        f"{invited['emailsCount']} unregistered email(s)"
    )
    return {
        "message": "Students invited successfully",
        "invitedCount": invited["invitedCount"],
        "emailsCount": invited["emailsCount"],
        "notFoundEmails": invited["notFoundEmails"],
        "notFoundUserIds": invited["notFoundUserIds"],
        "success": True,
    }


@router.post("/{assessment_id}/accept-invitation")
async def accept_invitation(assessment_id: str, current_user: dict = Depends(require_assessee), db=Depends(get_db)):
    assessment = await get_assessment_or_404(db, assessment_id)
    entry = await accept(db, assessment, current_user)
    if entry is None:
        raise NotInvitedError("You have not been invited to this assessment")
    logger.info(f"User {current_user['id']} accepted invitation to assessment {assessment_id}")
    return {"message": "Invitation accepted", "assessmentId": assessment_id, "invitation": entry}


@router.post("/{assessment_id}/submit")
async def submit_assessment(assessment_id: str, current_user: dict = Depends(require_assessee), db=Depends(get_db)):
    assessment = await get_assessment_or_404(db, assessment_id)
    if not is_participant(assessment, current_user):
        raise NotInvitedError()
    result = await finalize_assessment(db, assessment, current_user["id"])
    await advance_status(db, assessment_id, current_user, "Completed")
    return {"message": "Assessment submitted successfully", "result": result}


@router.get("/{assessment_id}/tests/{test_id}/attempts", response_model=AttemptStatus)
async def get_attempts(
    assessment_id: str,
    test_id: str,
    userId: Optional[str] = None,
    current_user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    assessment = await get_assessment_or_404(db, assessment_id)
    if assessment["createdBy"] == current_user["id"]:
        if not userId:
            raise HTTPException(400, "userId is required when querying as the assessment creator")
        target = userId
    else:
        if userId and userId != current_user["id"]:
            raise HTTPException(403, "Access denied")
        if not is_participant(assessment, current_user):
            raise NotInvitedError()
        target = current_user["id"]
    check_test_in_assessment(assessment, test_id)
    return await get_attempt_status(db, assessment, test_id, target)


@router.get("/{assessment_id}/results")
async def get_results(assessment_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    assessment = await get_assessment_or_404(db, assessment_id)
    if assessment["createdBy"] == current_user["id"]:
        results = await db.assessment_results.find({"assessmentId": assessment_id}).sort("submittedAt", 1).to_list(None)
        users = await db.users.find({"id": {"$in": [r["userId"] for r in results]}}).to_list(None)
        names = {u["id"]: {"name": u["name"], "email": u["email"]} for u in users}
        return [{**clean(r), "user": names.get(r["userId"])} for r in results]

    if not is_participant(assessment, current_user):
        raise NotInvitedError()
    result = await db.assessment_results.find_one({"assessmentId": assessment_id, "userId": current_user["id"]})
    return [clean(result)] if result else []


@router.get("/{assessment_id}/submissions")
async def get_assessment_submissions(
    assessment_id: str,
    userId: Optional[str] = None,
    testId: Optional[str] = None,
    current_user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    """Submissions made within the assessment, newest first.

    The creator sees everyone's (optionally narrowed to one user or test) with
    hidden cases shown; a participant sees only their own, masked.
    """
    assessment = await get_assessment_or_404(db, assessment_id)
    is_creator = assessment["createdBy"] == current_user["id"]
    if not is_creator:
        if userId and userId != current_user["id"]:
            raise HTTPException(403, "Access denied")
        if not is_participant(assessment, current_user):
            raise NotInvitedError()
        userId = current_user["id"]

    query = {"assessmentId": assessment_id}
    if userId:
        query["userId"] = userId
    if testId:
        query["testId"] = testId
    submissions = await db.submissions.find(query).sort("submittedAt", -1).to_list(None)

    tests = await db.tests.find({"id": {"$in": assessment.get("tests", [])}}).to_list(None)
    titles = {t["id"]: t["title"] for t in tests}
    users = await db.users.find({"id": {"$in": list({s["userId"] for s in submissions})}}).to_list(None)
    people = {u["id"]: {"name": u["name"], "email": u["email"]} for u in users}

    result = []
    for submission in submissions:
        submission = clean(submission)
        submission["testTitle"] = titles.get(submission["testId"])
        submission["user"] = people.get(submission["userId"])
        if not is_creator:
            submission["testResults"] = mask_hidden(submission.get("testResults", []))
        result.append(submission)
    return result
