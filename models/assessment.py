# models/assessment.py
from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime
from typing import List, Optional, Union

from database import to_naive_utc

INVITATION_STATUSES = ("Invited", "Started", "Completed")

class InvitedEmail(BaseModel):
    email: str

class AssessmentCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    tests: List[str] = Field(..., min_length=1)
    startTime: datetime
    endTime: datetime
    maxAttempts: int = Field(1, ge=1)
    isPublic: bool = False
    invitedUsers: List[Union[str, InvitedEmail]] = []

    @field_validator("startTime", "endTime")
    @classmethod
    def normalize_time(cls, value):
        return to_naive_utc(value)

    @field_validator("tests")
    @classmethod
    def unique_tests(cls, value):
        if len(set(value)) != len(value):
            raise ValueError("Duplicate test IDs in assessment")
        return value

    @model_validator(mode="after")
    def check_window(self):
        if self.startTime >= self.endTime:
            raise ValueError("End time must be after start time")
        return self

class AssessmentUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    tests: Optional[List[str]] = Field(None, min_length=1)
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    maxAttempts: Optional[int] = Field(None, ge=1)
    isPublic: Optional[bool] = None
    invitedUsers: Optional[List[Union[str, InvitedEmail]]] = None

    @field_validator("startTime", "endTime")
    @classmethod
    def normalize_time(cls, value):
        return to_naive_utc(value)

    @field_validator("tests")
    @classmethod
    def unique_tests(cls, value):
        if value is not None and len(set(value)) != len(value):
            raise ValueError("Duplicate test IDs in assessment")
        return value

class InviteRequest(BaseModel):
    emails: Union[str, List[str], None] = None  # list or comma-separated
    userIds: List[str] = []

    def email_list(self) -> List[str]:
        if not self.emails:
            return []
        raw = self.emails.split(",") if isinstance(self.emails, str) else self.emails
        seen = []
        for email in raw:
            email = email.strip().lower()
            if email and email not in seen:
                seen.append(email)
        return seen

class InvitedUser(BaseModel):
    userId: Optional[str] = None
    email: Optional[str] = None
    status: str = "Invited"
    accepted: bool = False
    invitedAt: Optional[datetime] = None
    acceptedAt: Optional[datetime] = None

class AttemptStatus(BaseModel):
    assessmentId: str
    testId: str
    userId: str
    attemptsUsed: int
    maxAttempts: int
    remainingAttempts: int
    assessmentSubmitted: bool
    state: str  # NotAttempted | InProgress | Exhausted | Submitted
