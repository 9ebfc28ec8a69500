# models/notification.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional

class Notification(BaseModel):
    id: str
    userId: str
    type: str = "invitation"
    title: str
    message: str
    assessmentId: Optional[str] = None
    read: bool = False
    createdAt: datetime
