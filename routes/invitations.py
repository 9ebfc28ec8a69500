# routes/invitations.py
"""Invited-user bookkeeping shared by the assessment and auth routes.

An assessment keeps one entry per invited identity in ``invitedUsers``:
``{userId, email, status, accepted, invitedAt, acceptedAt}``. Invitations by
email for someone who has not registered yet have no ``userId`` until the
person registers or accepts. ``status`` moves Invited -> Started -> Completed.
"""
from datetime import datetime
from typing import List, Optional, Tuple
import uuid
import logging

from database import clean

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

STATUS_ORDER = {"Invited": 0, "Started": 1, "Completed": 2}


def new_entry(email: Optional[str], user_id: Optional[str] = None, accepted: bool = False) -> dict:
    now = datetime.utcnow()
    return {
        "userId": user_id,
        "email": email.lower() if email else None,
        "status": "Invited",
        "accepted": accepted,
        "invitedAt": now,
        "acceptedAt": now if accepted else None,
    }


def find_invitation(assessment: dict, user: dict) -> Tuple[int, Optional[dict]]:
    """Locate the caller's entry, by user id first, then by email."""
    entries = assessment.get("invitedUsers", [])
    for index, entry in enumerate(entries):
        if entry.get("userId") and entry["userId"] == user["id"]:
            return index, entry
    email = (user.get("email") or "").lower()
    for index, entry in enumerate(entries):
        if email and (entry.get("email") or "").lower() == email:
            return index, entry
    return -1, None


def is_participant(assessment: dict, user: dict) -> bool:
    _, entry = find_invitation(assessment, user)
    return bool(entry and entry.get("accepted"))


async def create_notification(db, user_id: str, assessment: dict) -> dict:
    notification = {
        "id": str(uuid.uuid4()),
        "userId": user_id,
        "type": "invitation",
        "title": "New Assessment Invitation",
        "message": f"You have been invited to take the assessment: {assessment['title']}",
        "assessmentId": assessment["id"],
        "read": False,
        "createdAt": datetime.utcnow(),
    }
    await db.notifications.insert_one(notification)
    return clean(notification)


async def add_invitations(db, assessment: dict, emails: List[str], user_ids: List[str]) -> dict:
    """Work out the entries to add for the given emails and user ids, skipping anyone already invited.

    Nothing is written here; ``save_invitations`` applies the plan.
    """
    entries = assessment.get("invitedUsers", [])
    invited_ids = {e["userId"] for e in entries if e.get("userId")}
    invited_emails = {e["email"] for e in entries if e.get("email")}
    new_entries = []
    bind = []
    notify = []
    invited_count = 0
    emails_count = 0
    not_found_emails = []
    not_found_user_ids = []

    for email in emails:
        email = email.strip().lower()
        if not email or email in invited_emails:
            continue
        user = await db.users.find_one({"email": email})
        if user:
            if user["id"] in invited_ids:
                continue
            new_entries.append(new_entry(email, user["id"]))
            invited_ids.add(user["id"])
            notify.append(user["id"])
            invited_count += 1
        else:
            new_entries.append(new_entry(email))
            emails_count += 1
            not_found_emails.append(email)
        invited_emails.add(email)

    for user_id in user_ids:
        if user_id in invited_ids:
            continue
        user = await db.users.find_one({"id": user_id})
        if not user:
            not_found_user_ids.append(user_id)
            continue
        if user["email"] in invited_emails:
            # Bind the existing email-only entry instead of duplicating it
            pending = [e for e in new_entries if e["email"] == user["email"]]
            if pending:
                pending[0]["userId"] = user["id"]
            else:
                bind.append((user["email"], user["id"]))
        else:
            new_entries.append(new_entry(user["email"], user["id"]))
            invited_emails.add(user["email"])
        invited_ids.add(user["id"])
        notify.append(user["id"])
        invited_count += 1

    return {
        "entries": new_entries,
        "bind": bind,
        "notify": notify,
        "invitedCount": invited_count,
        "emailsCount": emails_count,
        "notFoundEmails": not_found_emails,
        "notFoundUserIds": not_found_user_ids,
    }


async def bind_user(db, assessment_id: str, email: str, user_id: str) -> bool:
    """Attach ``user_id`` to the email-only entry for ``email``, if there is one."""
    result = await db.assessments.update_one(
        {"id": assessment_id, "invitedUsers": {"$elemMatch": {"email": email, "userId": None}}},
        {"$set": {"invitedUsers.$.userId": user_id}},
    )
    return result.modified_count > 0


async def push_entry(db, assessment_id: str, entry: dict) -> bool:
    """Append ``entry`` unless its email or user id is already on the list."""
    query = {"id": assessment_id, "invitedUsers.email": {"$ne": entry["email"]}}
    if entry.get("userId"):
        query["invitedUsers.userId"] = {"$ne": entry["userId"]}
    result = await db.assessments.update_one(query, {"$push": {"invitedUsers": entry}})
    return result.modified_count > 0


async def save_invitations(db, assessment_id: str, invited: dict) -> None:
    for entry in invited["entries"]:
        await push_entry(db, assessment_id, entry)
    for email, user_id in invited["bind"]:
        await bind_user(db, assessment_id, email, user_id)


def normalize_invited(raw: list) -> List[str]:
    """Turn the create/update payload (emails or {email} objects) into a list of emails."""
    emails = []
    for item in raw or []:
        email = item if isinstance(item, str) else getattr(item, "email", None)
        if email and email.strip():
            emails.append(email.strip().lower())
    return emails


async def notify_invited(db, assessment: dict, user_ids: List[str]) -> None:
    for user_id in user_ids:
        await create_notification(db, user_id, assessment)
    if user_ids:
        logger.info(f"Sent {len(user_ids)} invitation notification(s) for assessment {assessment['id']}")


async def link_pending_invitations(db, user: dict) -> int:
    """Bind email-only invitations to a freshly registered user and notify them."""
    assessments = await db.assessments.find(
        {"invitedUsers": {"$elemMatch": {"email": user["email"], "userId": None}}}
    ).to_list(None)
    linked = 0
    for assessment in assessments:
        if await bind_user(db, assessment["id"], user["email"], user["id"]):
            await create_notification(db, user["id"], assessment)
            linked += 1
    return linked


async def accept(db, assessment: dict, user: dict) -> Optional[dict]:
    """Mark the caller's invitation accepted. Public assessments add an entry on the fly.

    Returns the entry, or None when the caller is not invited to a private assessment.
    """
    _, entry = find_invitation(assessment, user)
    if entry is None:
        if not assessment.get("isPublic"):
            return None
        if await push_entry(db, assessment["id"], new_entry(user["email"], user["id"], accepted=True)):
            logger.info(f"User {user['id']} joined public assessment {assessment['id']}")

    now = datetime.utcnow()
    matches = (
        {"userId": user["id"]},
        {"email": user["email"], "userId": {"$in": [None, user["id"]]}},
    )
    for match in matches:
        result = await db.assessments.update_one(
            {"id": assessment["id"], "invitedUsers": {"$elemMatch": {**match, "accepted": {"$ne": True}}}},
            {"$set": {
                "invitedUsers.$.userId": user["id"],
                "invitedUsers.$.accepted": True,
                "invitedUsers.$.acceptedAt": now,
            }},
        )
        if result.modified_count:
            break

    fresh = await db.assessments.find_one({"id": assessment["id"]})
    _, entry = find_invitation(fresh or {}, user)
    return entry


async def advance_status(db, assessment_id: str, user: dict, status: str) -> None:
    """Move the caller's entry forward to ``status``; never moves it backwards."""
    earlier = [s for s, rank in STATUS_ORDER.items() if rank < STATUS_ORDER[status]]
    await db.assessments.update_one(
        {"id": assessment_id, "invitedUsers": {"$elemMatch": {"userId": user["id"], "status": {"$in": earlier}}}},
        {"$set": {"invitedUsers.$.status": status}},
    )
