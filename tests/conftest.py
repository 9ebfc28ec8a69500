import asyncio
from datetime import datetime, timedelta

import httpx
import pytest
from mongomock_motor import AsyncMongoMockClient

from database import get_db, init_db
from main import app
from routes.executor import CodeExecutor, ExecutionError, get_executor


class EchoExecutor(CodeExecutor):
    """Programs containing "echo" print their input; "sleep" hangs, "crash" fails."""

    async def execute(self, code, language, input):
        if "sleep" in code:
            await asyncio.sleep(30)
        if "crash" in code:
            raise ExecutionError("Segmentation fault")
        return {
            "output": input if "echo" in code else "nope",
            "executionTime": 12,
            "memoryUsed": 3,
        }


@pytest.fixture
async def db():
    database = AsyncMongoMockClient()["coding_assessment_test"]
    await init_db(database)
    return database


@pytest.fixture
def executor():
    return EchoExecutor(timeout=0.2)


@pytest.fixture
async def client(db, executor):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_executor] = lambda: executor
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()


async def register(client, name, role="assessee", email=None):
    email = email or f"{name.lower()}@example.com"
    response = await client.post(
        "/api/auth/register",
        json={"name": name, "email": email, "password": "secret123", "role": role},
    )
    assert response.status_code == 201, response.text
    body = response.json()
    return body["user"], {"Authorization": f"Bearer {body['token']}"}


@pytest.fixture
async def assessor(client):
    return await register(client, "Alice", role="assessor")


@pytest.fixture
async def assessee(client):
    return await register(client, "Bob")


@pytest.fixture
async def other_assessee(client):
    return await register(client, "Carol")


def problem(title="Echo", cases=None, **extra):
    body = {
        "title": title,
        "description": "Print the input back",
        "difficulty": "Easy",
        "problemStatement": "Read a line and print it.",
        "testCases": cases if cases is not None else [
            {"input": "1", "expected": "1"},
            {"input": "2", "expected": "2"},
            {"input": "secret", "expected": "secret", "isHidden": True},
        ],
    }
    body.update(extra)
    return body


async def create_problem(client, headers, **kwargs):
    response = await client.post("/api/tests", json=problem(**kwargs), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["test"]


def window(start_hours=-1, end_hours=1):
    now = datetime.utcnow()
    return {
        "startTime": (now + timedelta(hours=start_hours)).isoformat(),
        "endTime": (now + timedelta(hours=end_hours)).isoformat(),
    }


async def create_assessment(client, headers, test_ids, max_attempts=2, invited=(), **extra):
    body = {
        "title": "Screening",
        "description": "First round",
        "tests": list(test_ids),
        "maxAttempts": max_attempts,
        "invitedUsers": list(invited),
        **window(),
    }
    body.update(extra)
    response = await client.post("/api/assessments", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["assessment"]


async def join(client, assessment_id, headers):
    response = await client.post(f"/api/assessments/{assessment_id}/accept-invitation", headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


async def submit(client, test_id, headers, code="echo", assessment_id=None, language="python"):
    return await client.post(
        f"/api/tests/{test_id}/submissions",
        json={"code": code, "language": language, "assessmentId": assessment_id},
        headers=headers,
    )
