# routes/notifications.py
from fastapi import APIRouter, HTTPException, Depends
from typing import List

from database import get_db, clean
from models.notification import Notification
from .auth import get_current_user

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=List[Notification])
async def get_notifications(unread_only: bool = False, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    query = {"userId": current_user["id"]}
    if unread_only:
        query["read"] = False
    notifications = await db.notifications.find(query).sort("createdAt", -1).to_list(None)
    return [clean(n) for n in notifications]


@router.put("/{notification_id}/read", response_model=Notification)
async def mark_as_read(notification_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    notification = await db.notifications.find_one({"id": notification_id})
    if not notification:
        raise HTTPException(404, "Notification not found")
    if notification["userId"] != current_user["id"]:
        raise HTTPException(403, "Access denied")
    await db.notifications.update_one({"id": notification_id}, {"$set": {"read": True}})
    notification["read"] = True
    return clean(notification)
