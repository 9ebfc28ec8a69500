# models/submission.py
from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

class SubmissionCreate(BaseModel):
    code: str = Field(..., min_length=1)
    language: str = "python"
    assessmentId: Optional[str] = None

class ExecuteRequest(BaseModel):
    code: str = Field(..., min_length=1)
    language: str = "python"
    input: str = ""

class RunRequest(BaseModel):
    code: str = Field(..., min_length=1)
    language: str = "python"

class TestCaseResult(BaseModel):
    testCaseNumber: int
    passed: bool
    status: str
    input: str
    expected: str
    actual: str
    executionTime: int = 0  # ms
    memoryUsed: int = 0  # MB
    isHidden: bool = False

class Submission(BaseModel):
    id: str
    userId: str
    testId: str
    assessmentId: Optional[str] = None
    code: str
    language: str
    status: str
    testCasesPassed: int
    totalTestCases: int
    executionTime: int
    memoryUsed: int
    testResults: List[TestCaseResult] = []
    submittedAt: datetime
