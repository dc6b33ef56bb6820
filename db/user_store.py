import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from core.errors import AuthError, Outcome
from schemas.user_schema import UserInDB

logger = logging.getLogger(__name__)


def normalize_identity(value: str) -> str:
    return (value or "").strip().lower()


class UserStore:
    """Persistence contract for user records.

    The only field the session layer writes is ``refresh_token``; every
    other field is owned by registration.
    """

    async def find_by_identity(self, identity: str) -> Optional[UserInDB]:
        raise NotImplementedError

    async def find_by_id(self, user_id: str) -> Optional[UserInDB]:
        raise NotImplementedError

    async def create(self, document: Dict[str, Any]) -> Outcome[UserInDB]:
        raise NotImplementedError

    async def set_refresh_token(self, user_id: str, token: Optional[str]) -> bool:
        raise NotImplementedError

    async def swap_refresh_token(self, user_id: str, expected: str, new: str) -> bool:
        """Replace the stored token only if it still equals ``expected``."""
        raise NotImplementedError


def _object_id(user_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(user_id)
    except (InvalidId, TypeError):
        return None


class MongoUserStore(UserStore):
    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def find_by_identity(self, identity: str) -> Optional[UserInDB]:
        value = normalize_identity(identity)
        if not value:
            return None
        doc = await self.collection.find_one({"$or": [{"username": value}, {"email": value}]})
        return UserInDB.from_document(doc) if doc else None

    async def find_by_id(self, user_id: str) -> Optional[UserInDB]:
        oid = _object_id(user_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        return UserInDB.from_document(doc) if doc else None

    async def create(self, document: Dict[str, Any]) -> Outcome[UserInDB]:
        doc = dict(document)
        doc["username"] = normalize_identity(doc.get("username", ""))
        doc["email"] = normalize_identity(doc.get("email", ""))
        # Unique indexes are the source of truth; the lookup gives a clean early answer.
        existing = await self.collection.find_one(
            {"$or": [{"username": doc["username"]}, {"email": doc["email"]}]}
        )
        if existing:
            return Outcome.failure(AuthError.CONFLICT)
        now = datetime.now(timezone.utc)
        doc.setdefault("refresh_token", None)
        doc.setdefault("created_at", now)
        doc.setdefault("updated_at", now)
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError:
            logger.info(f"Duplicate user insert rejected for username={doc['username']}")
            return Outcome.failure(AuthError.CONFLICT)
        doc["_id"] = result.inserted_id
        return Outcome.success(UserInDB.from_document(doc))

    async def set_refresh_token(self, user_id: str, token: Optional[str]) -> bool:
        oid = _object_id(user_id)
        if oid is None:
            return False
        result = await self.collection.update_one(
            {"_id": oid},
            {"$set": {"refresh_token": token, "updated_at": datetime.now(timezone.utc)}},
        )
        return result.matched_count > 0

    async def swap_refresh_token(self, user_id: str, expected: str, new: str) -> bool:
        oid = _object_id(user_id)
        if oid is None or not expected:
            return False
        doc = await self.collection.find_one_and_update(
            {"_id": oid, "refresh_token": expected},
            {"$set": {"refresh_token": new, "updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        return doc is not None
