# routes/auth.py
from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pymongo.errors import DuplicateKeyError
from bcrypt import hashpw, gensalt, checkpw
from datetime import datetime, timedelta
import uuid
import logging

import config
from database import get_db
from models.user import UserRegister, UserLogin, VALID_ROLES, public_user
from .invitations import link_pending_invitations

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def hash_password(password: str) -> str:
    return hashpw(password.encode("utf-8"), gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(user: dict) -> str:
    payload = {
        "id": user["id"],
        "email": user["email"],
        "role": user["role"],
        "exp": datetime.utcnow() + timedelta(minutes=config.JWT_EXPIRE_MINUTES),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


async def get_user_by_id(db, user_id: str):
    user = await db.users.find_one({"id": user_id})
    if not user:
        logger.warning(f"User not found for id: {user_id}")
    return user


async def get_current_user(token: str = Depends(oauth2_scheme), db=Depends(get_db)):
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError as e:
        logger.error(f"JWTError: {str(e)}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user_id = payload.get("id")
    if not user_id or not payload.get("role"):
        logger.error("Invalid token: Missing id or role")
        raise HTTPException(status_code=401, detail="Invalid token")
    user = await get_user_by_id(db, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return {"id": user["id"], "role": user["role"], "name": user["name"], "email": user["email"]}


async def require_assessor(current_user: dict = Depends(get_current_user)):
    if current_user["role"] != "assessor":
        logger.warning(f"Assessor role required, got {current_user['role']} for {current_user['id']}")
        raise HTTPException(status_code=403, detail="Access denied. Assessor role required.")
    return current_user


async def require_assessee(current_user: dict = Depends(get_current_user)):
    if current_user["role"] != "assessee":
        raise HTTPException(status_code=403, detail="Access denied. Assessee role required.")
    return current_user


@router.post("/register", status_code=201)
async def register(request: UserRegister, db=Depends(get_db)):
    email = request.email.strip().lower()
    logger.info(f"Registration attempt for email: {email}, role: {request.role}")
    if request.role not in VALID_ROLES:
        raise HTTPException(status_code=400, detail='Invalid role. Must be either "assessor" or "assessee"')

    now = datetime.utcnow()
    user = {
        "id": str(uuid.uuid4()),
        "name": request.name.strip(),
        "email": email,
        "password": hash_password(request.password),
        "role": request.role,
        "createdAt": now,
        "updatedAt": now,
    }
    try:
        await db.users.insert_one(user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already in use")

    linked = await link_pending_invitations(db, user)
    if linked:
        logger.info(f"Linked {linked} pending invitation(s) to new user {user['id']}")

    return {
        "message": "User registered successfully",
        "user": public_user(user),
        "token": create_access_token(user),
    }


@router.post("/login")
async def login(request: UserLogin, db=Depends(get_db)):
    email = request.email.strip().lower()
    logger.info(f"Login attempt for email: {email}")
    user = await db.users.find_one({"email": email})
    if not user or not verify_password(request.password, user["password"]):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return {
        "message": "Login successful",
        "user": public_user(user),
        "token": create_access_token(user),
    }


@router.get("/me")
async def me(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    user = await db.users.find_one({"id": current_user["id"]})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": public_user(user)}
