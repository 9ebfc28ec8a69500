import asyncio

import pytest

from conftest import create_assessment, create_problem, join, submit, window
from routes import attempts
from routes.attempts import AssessmentAlreadySubmittedError, AttemptLimitReachedError, reserve_attempt


@pytest.fixture
async def setup(client, assessor, assessee):
    """A private assessment with two tests that Bob has accepted."""
    _, alice = assessor
    _, bob = assessee
    first = await create_problem(client, alice, title="First")
    second = await create_problem(client, alice, title="Second")
    assessment = await create_assessment(
        client, alice, [first["id"], second["id"]], invited=["bob@example.com", "carol@example.com"]
    )
    await join(client, assessment["id"], bob)
    return assessment, first, second


def attempts_url(assessment, test):
    return f"/api/assessments/{assessment['id']}/tests/{test['id']}/attempts"


async def test_attempt_limit(client, setup, assessee):
    assessment, first, _ = setup
    _, bob = assessee

    response = await submit(client, first["id"], bob, code="crash", assessment_id=assessment["id"])
    assert response.status_code == 201
    body = response.json()
    assert body["submission"]["status"] == "Runtime Error"
    assert (body["attemptsUsed"], body["maxAttempts"], body["remainingAttempts"]) == (1, 2, 1)

    response = await submit(client, first["id"], bob, assessment_id=assessment["id"])
    assert response.json()["attemptsUsed"] == 2
    assert response.json()["remainingAttempts"] == 0

    response = await submit(client, first["id"], bob, assessment_id=assessment["id"])
    assert response.status_code == 409
    assert response.json()["code"] == "ATTEMPT_LIMIT_REACHED"

    status = (await client.get(attempts_url(assessment, first), headers=bob)).json()
    assert status["attemptsUsed"] == 2
    assert status["state"] == "Exhausted"
    history = (await client.get(f"/api/code/submissions?assessmentId={assessment['id']}", headers=bob)).json()
    assert len(history) == 2


async def test_single_attempt_assessment(client, assessor, assessee):
    _, alice = assessor
    _, bob = assessee
    test = await create_problem(client, alice)
    assessment = await create_assessment(client, alice, [test["id"]], max_attempts=1, invited=["bob@example.com"])
    await join(client, assessment["id"], bob)

    assert (await submit(client, test["id"], bob, assessment_id=assessment["id"])).status_code == 201
    second = await submit(client, test["id"], bob, assessment_id=assessment["id"])
    assert second.status_code == 409
    assert second.json()["code"] == "ATTEMPT_LIMIT_REACHED"


async def test_counters_are_per_test_and_per_user(client, setup, assessee, other_assessee):
    assessment, first, second = setup
    _, bob = assessee
    _, carol = other_assessee
    await join(client, assessment["id"], carol)

    await submit(client, first["id"], bob, assessment_id=assessment["id"])
    await submit(client, first["id"], bob, assessment_id=assessment["id"])

    assert (await client.get(attempts_url(assessment, second), headers=bob)).json()["state"] == "NotAttempted"
    carol_status = (await client.get(attempts_url(assessment, first), headers=carol)).json()
    assert carol_status["attemptsUsed"] == 0
    assert carol_status["remainingAttempts"] == 2

    response = await submit(client, first["id"], carol, assessment_id=assessment["id"])
    assert response.status_code == 201
    assert response.json()["attemptsUsed"] == 1
    assert (await client.get(attempts_url(assessment, first), headers=carol)).json()["state"] == "InProgress"


async def test_concurrent_submissions_never_exceed_limit(client, setup, assessee):
    assessment, first, _ = setup
    _, bob = assessee

    responses = await asyncio.gather(*[
        submit(client, first["id"], bob, assessment_id=assessment["id"]) for _ in range(6)
    ])
    codes = sorted(r.status_code for r in responses)
    assert codes == [201, 201, 409, 409, 409, 409]
    assert sorted(r.json()["attemptsUsed"] for r in responses if r.status_code == 201) == [1, 2]


async def test_reserve_attempt_is_atomic(db):
    assessment = {"id": "a1", "maxAttempts": 3}
    outcomes = await asyncio.gather(
        *[reserve_attempt(db, assessment, "t1", "u1") for _ in range(5)],
        return_exceptions=True,
    )
    used = sorted(o for o in outcomes if isinstance(o, int))
    assert used == [1, 2, 3]
    assert sum(isinstance(o, AttemptLimitReachedError) for o in outcomes) == 2
    record = await db.attempts.find_one({"userId": "u1", "testId": "t1", "assessmentId": "a1"})
    assert record["attemptsUsed"] == 3


async def test_submitting_assessment_freezes_attempts(client, setup, assessee):
    assessment, first, second = setup
    _, bob = assessee
    await submit(client, first["id"], bob, assessment_id=assessment["id"])

    response = await client.post(f"/api/assessments/{assessment['id']}/submit", headers=bob)
    assert response.status_code == 200

    for test in (first, second):
        response = await submit(client, test["id"], bob, assessment_id=assessment["id"])
        assert response.status_code == 409
        assert response.json()["code"] == "ASSESSMENT_SUBMITTED"
        status = (await client.get(attempts_url(assessment, test), headers=bob)).json()
        assert status["state"] == "Submitted"
        assert status["assessmentSubmitted"] is True

    assert (await client.get(attempts_url(assessment, first), headers=bob)).json()["attemptsUsed"] == 1

    again = await client.post(f"/api/assessments/{assessment['id']}/submit", headers=bob)
    assert again.status_code == 409
    assert again.json()["code"] == "ASSESSMENT_SUBMITTED"

    view = (await client.get(f"/api/assessments/{assessment['id']}", headers=bob)).json()
    assert view["assessmentSubmitted"] is True


async def test_participation_is_required(client, setup, other_assessee, assessor):
    assessment, first, _ = setup
    _, carol = other_assessee
    _, alice = assessor

    # Carol is invited but has not accepted
    response = await submit(client, first["id"], carol, assessment_id=assessment["id"])
    assert response.status_code == 403
    assert response.json()["code"] == "NOT_INVITED"

    response = await client.post(f"/api/assessments/{assessment['id']}/submit", headers=carol)
    assert response.status_code == 403
    assert response.json()["code"] == "NOT_INVITED"

    response = await client.get(attempts_url(assessment, first), headers=carol)
    assert response.status_code == 403

    response = await submit(client, first["id"], alice, assessment_id=assessment["id"])
    assert response.status_code == 403
    assert response.json()["code"] == "NOT_INVITED"


async def test_test_must_belong_to_assessment(client, setup, assessor, assessee):
    assessment, _, _ = setup
    _, alice = assessor
    _, bob = assessee
    outsider = await create_problem(client, alice, title="Outsider", isPublic=True)

    response = await submit(client, outsider["id"], bob, assessment_id=assessment["id"])
    assert response.status_code == 403
    assert response.json()["code"] == "TEST_NOT_IN_ASSESSMENT"

    response = await client.get(attempts_url(assessment, outsider), headers=bob)
    assert response.json()["code"] == "TEST_NOT_IN_ASSESSMENT"


@pytest.mark.parametrize("start_hours,end_hours,message", [
    (1, 2, "Assessment has not started yet"),
    (-3, -2, "Assessment has ended"),
])
async def test_submissions_outside_window_are_rejected(client, assessor, assessee, start_hours, end_hours, message):
    _, alice = assessor
    _, bob = assessee
    test = await create_problem(client, alice)
    assessment = await create_assessment(
        client, alice, [test["id"]], invited=["bob@example.com"], **window(start_hours, end_hours)
    )
    await join(client, assessment["id"], bob)

    response = await submit(client, test["id"], bob, assessment_id=assessment["id"])
    assert response.status_code == 403
    assert response.json() == {"detail": message, "code": "ASSESSMENT_CLOSED"}
    assert (await client.get(attempts_url(assessment, test), headers=bob)).json()["attemptsUsed"] == 0


async def test_creator_queries_attempts_for_a_user(client, setup, assessor, assessee):
    assessment, first, _ = setup
    _, alice = assessor
    bob_user, bob = assessee
    await submit(client, first["id"], bob, assessment_id=assessment["id"])

    assert (await client.get(attempts_url(assessment, first), headers=alice)).status_code == 400
    response = await client.get(f"{attempts_url(assessment, first)}?userId={bob_user['id']}", headers=alice)
    assert response.status_code == 200
    assert response.json()["userId"] == bob_user["id"]
    assert response.json()["attemptsUsed"] == 1

    snooping = await client.get(f"{attempts_url(assessment, first)}?userId=someone-else", headers=bob)
    assert snooping.status_code == 403


async def test_invitation_status_progresses(client, setup, assessee):
    assessment, first, _ = setup
    _, bob = assessee

    def status_of(listing):
        return next(a["status"] for a in listing if a["id"] == assessment["id"])

    assert status_of((await client.get("/api/assessments/assigned", headers=bob)).json()) == "Invited"
    await submit(client, first["id"], bob, assessment_id=assessment["id"])
    assert status_of((await client.get("/api/assessments/assigned", headers=bob)).json()) == "Started"
    await client.post(f"/api/assessments/{assessment['id']}/submit", headers=bob)
    listing = (await client.get("/api/assessments/assigned", headers=bob)).json()
    assert status_of(listing) == "Completed"
    assert listing[0]["assessmentSubmitted"] is True


async def test_no_reservation_while_assessment_is_being_finalized(db, monkeypatch):
    assessment = {"id": "a1", "maxAttempts": 3, "tests": ["t1", "t2"]}
    assert await reserve_attempt(db, assessment, "t1", "u1") == 1
    outcomes = []
    summarize = attempts.summarize_assessment

    async def summarize_with_late_submit(db_, assessment_, user_id):
        # A submit arriving after its pre-check passed, mid-finalization
        try:
            outcomes.append(await reserve_attempt(db_, assessment_, "t1", user_id))
        except AssessmentAlreadySubmittedError as e:
            outcomes.append(e)
        return await summarize(db_, assessment_, user_id)

    monkeypatch.setattr(attempts, "summarize_assessment", summarize_with_late_submit)
    result = await attempts.submit_assessment(db, assessment, "u1")

    assert isinstance(outcomes[0], AssessmentAlreadySubmittedError)
    assert result["tests"][0]["attemptsUsed"] == 1
    record = await db.attempts.find_one({"userId": "u1", "testId": "t1", "assessmentId": "a1"})
    assert record["attemptsUsed"] == 1
    assert record["locked"] is True


async def test_submit_racing_finalize_is_rejected(client, setup, assessee, monkeypatch):
    assessment, first, _ = setup
    _, bob = assessee
    stored = await client.get(f"/api/assessments/{assessment['id']}", headers=bob)
    assert stored.json()["assessmentSubmitted"] is False

    real_check = attempts.is_submitted

    async def check_then_finalize(db_, user_id, assessment_id):
        submitted = await real_check(db_, user_id, assessment_id)
        full = await db_.assessments.find_one({"id": assessment_id})
        await attempts.submit_assessment(db_, full, user_id)
        return submitted

    monkeypatch.setattr(attempts, "is_submitted", check_then_finalize)
    response = await submit(client, first["id"], bob, assessment_id=assessment["id"])
    monkeypatch.undo()

    assert response.status_code == 409
    assert response.json()["code"] == "ASSESSMENT_SUBMITTED"
    history = (await client.get(f"/api/code/submissions?assessmentId={assessment['id']}", headers=bob)).json()
    assert history == []
    status = (await client.get(attempts_url(assessment, first), headers=bob)).json()
    assert (status["attemptsUsed"], status["state"]) == (0, "Submitted")
