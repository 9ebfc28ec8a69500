# routes/users.py
from fastapi import APIRouter, HTTPException, Depends
from pymongo.errors import DuplicateKeyError
from datetime import datetime
from typing import List
import logging
import re

from database import get_db
from models.user import UserUpdate, UserOut, VALID_ROLES, public_user
from .auth import get_current_user, require_assessor, hash_password

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=List[UserOut])
async def get_users(search: str = None, current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    logger.info(f"Fetching users with search={search}, current_user={current_user['id']}")
    query = {}
    if search:
        search = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": search, "$options": "i"}},
            {"email": {"$regex": search, "$options": "i"}},
        ]
    users = await db.users.find(query).sort("name", 1).to_list(None)
    return [public_user(u) for u in users]


@router.get("/assessees", response_model=List[UserOut])
async def get_assessees(current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    users = await db.users.find({"role": "assessee"}).sort("name", 1).to_list(None)
    return [public_user(u) for u in users]


@router.get("/role/{role}", response_model=List[UserOut])
async def get_users_by_role(role: str, current_user: dict = Depends(require_assessor), db=Depends(get_db)):
    if role not in VALID_ROLES:
        raise HTTPException(status_code=400, detail='Invalid role. Must be either "assessor" or "assessee"')
    users = await db.users.find({"role": role}).sort("name", 1).to_list(None)
    return [public_user(u) for u in users]


@router.get("/{user_id}", response_model=UserOut)
async def get_user(user_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    if current_user["role"] != "assessor" and current_user["id"] != user_id:
        raise HTTPException(status_code=403, detail="Access denied. Insufficient permissions.")
    user = await db.users.find_one({"id": user_id})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return public_user(user)


@router.put("/{user_id}")
async def update_user(user_id: str, update_data: UserUpdate, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info(f"Updating user {user_id}, current_user: {current_user['id']}")
    if current_user["id"] != user_id:
        raise HTTPException(status_code=403, detail="Access denied. You can only update your own profile.")

    update_dict = {}
    if update_data.name:
        update_dict["name"] = update_data.name.strip()
    if update_data.email:
        update_dict["email"] = update_data.email.strip().lower()
    if update_data.password:
        update_dict["password"] = hash_password(update_data.password)
    update_dict["updatedAt"] = datetime.utcnow()

    try:
        result = await db.users.update_one({"id": user_id}, {"$set": update_dict})
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already in use")
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="User not found")

    user = await db.users.find_one({"id": user_id})
    return {"message": "User updated successfully", "user": public_user(user)}


@router.delete("/{user_id}")
async def delete_user(user_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info(f"Deleting user {user_id}, current_user: {current_user['id']}")
    if current_user["id"] != user_id:
        raise HTTPException(status_code=403, detail="Access denied. You can only delete your own profile.")
    result = await db.users.delete_one({"id": user_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    await db.notifications.delete_many({"userId": user_id})
    return {"message": "User deleted successfully"}
