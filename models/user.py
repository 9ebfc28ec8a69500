# models/user.py
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional

VALID_ROLES = {"assessor", "assessee"}

class UserRegister(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)
    role: str = "assessee"  # fixed after registration

class UserLogin(BaseModel):
    email: str
    password: str

class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6)

class UserOut(BaseModel):
    id: str
    name: str
    email: str
    role: str
    createdAt: Optional[datetime] = None


def public_user(user: dict) -> dict:
    return {
        "id": user["id"],
        "name": user["name"],
        "email": user["email"],
        "role": user["role"],
        "createdAt": user.get("createdAt"),
    }
