# models/test.py
from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

DIFFICULTY_PATTERN = "^(Easy|Medium|Hard)$"

class TestCase(BaseModel):
    input: str
    expected: str
    isHidden: bool = False

class TestCaseUpdate(BaseModel):
    input: Optional[str] = None
    expected: Optional[str] = None
    isHidden: Optional[bool] = None

class TestCaseOut(TestCase):
    id: str

class TestCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str
    difficulty: str = Field("Medium", pattern=DIFFICULTY_PATTERN)
    timeLimit: int = Field(60, ge=1)  # seconds per test case
    problemStatement: str
    inputFormat: Optional[str] = None
    outputFormat: Optional[str] = None
    constraints: Optional[str] = None
    sampleInput: Optional[str] = None
    sampleOutput: Optional[str] = None
    testCases: List[TestCase] = []
    isPublic: bool = False

class TestUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    difficulty: Optional[str] = Field(None, pattern=DIFFICULTY_PATTERN)
    timeLimit: Optional[int] = Field(None, ge=1)
    problemStatement: Optional[str] = None
    inputFormat: Optional[str] = None
    outputFormat: Optional[str] = None
    constraints: Optional[str] = None
    sampleInput: Optional[str] = None
    sampleOutput: Optional[str] = None
    testCases: Optional[List[TestCase]] = None
    isPublic: Optional[bool] = None

class TestOut(BaseModel):
    id: str
    title: str
    description: str
    difficulty: str
    timeLimit: int
    problemStatement: str
    inputFormat: Optional[str] = None
    outputFormat: Optional[str] = None
    constraints: Optional[str] = None
    sampleInput: Optional[str] = None
    sampleOutput: Optional[str] = None
    testCases: List[TestCaseOut] = []
    createdBy: str
    isPublic: bool
    createdAt: datetime
    updatedAt: datetime
