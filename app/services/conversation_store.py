import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from app.errors import (
    AccessDenied,
    InvalidOperation,
    NotFound,
    Unauthenticated,
    ValidationError,
    driver_errors,
)
from app.models.message import MAX_MESSAGE_LENGTH, ConversationOut, MessageOut
from app.models.user import UserPublic
from app.utils.objectid import parse_oid

logger = logging.getLogger(__name__)

LAST_MESSAGE_PREVIEW_LENGTH = 100


def participant_key(a: ObjectId, b: ObjectId) -> str:
    """Order-independent key for a participant pair."""
    return ":".join(sorted([str(a), str(b)]))


def _user_oid(user_id) -> ObjectId:
    oid = parse_oid(user_id) if user_id else None
    if oid is None:
        raise Unauthenticated()
    return oid


def _other_participant(conversation: dict, user: ObjectId) -> Optional[ObjectId]:
    return next((p for p in conversation["participants"] if p != user), None)


class ConversationStore:
    """Two-party conversations and their messages."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.conversations = db.conversations
        self.messages = db.messages

    async def _public_users(self, ids: Iterable[ObjectId]) -> Dict[ObjectId, dict]:
        ids = list(set(ids))
        if not ids:
            return {}
        async with driver_errors():
            users = await self.db.users.find(
                {"_id": {"$in": ids}}, {"fullname": 1, "email": 1}
            ).to_list(length=None)
        return {u["_id"]: u for u in users}

    async def _member_conversation(self, conversation_id, user: ObjectId) -> dict:
        # unknown conversations and foreign ones look the same to the caller
        cid = parse_oid(conversation_id)
        if cid is None:
            raise AccessDenied()
        async with driver_errors():
            conversation = await self.conversations.find_one({"_id": cid, "participants": user})
        if not conversation:
            raise AccessDenied()
        return conversation

    async def is_participant(self, conversation_id, user_id) -> bool:
        try:
            await self._member_conversation(conversation_id, _user_oid(user_id))
        except (AccessDenied, Unauthenticated):
            return False
        return True

    async def get_or_create_conversation(self, user_a, user_b) -> ConversationOut:
        a = _user_oid(user_a)
        b = parse_oid(user_b)
        if b is None:
            raise NotFound("User not found")
        if a == b:
            raise InvalidOperation("Cannot chat with yourself")

        async with driver_errors():
            if not await self.db.users.find_one({"_id": b}, {"_id": 1}):
                raise NotFound("User not found")

            key = participant_key(a, b)
            now = datetime.now(timezone.utc)
            try:
                result = await self.conversations.update_one(
                    {"participant_key": key},
                    {"$setOnInsert": {
                        "participants": sorted([a, b], key=str),
                        "last_message": "",
                        "last_message_time": now,
                        "created_at": now,
                    }},
                    upsert=True,
                )
                if result.upserted_id is not None:
                    logger.info("✅ New conversation %s between %s and %s", result.upserted_id, a, b)
            except DuplicateKeyError:
                # the other side created it first
                logger.debug("Conversation %s created concurrently, re-fetching", key)

            conversation = await self.conversations.find_one({"participant_key": key})

        users = await self._public_users([b])
        return ConversationOut(
            id=str(conversation["_id"]),
            other_user=UserPublic.from_doc(users.get(b)),
            last_message=conversation.get("last_message", ""),
            last_message_time=conversation.get("last_message_time"),
            created_at=conversation.get("created_at"),
        )

    async def list_conversations(self, user_id) -> List[ConversationOut]:
        user = _user_oid(user_id)
        async with driver_errors():
            conversations = await self.conversations.find({"participants": user}).sort(
                [("last_message_time", DESCENDING), ("_id", DESCENDING)]
            ).to_list(length=None)

            unread_rows = await self.messages.aggregate([
                {"$match": {
                    "conversation_id": {"$in": [c["_id"] for c in conversations]},
                    "receiver_id": user,
                    "read": False,
                }},
                {"$group": {"_id": "$conversation_id", "count": {"$sum": 1}}},
            ]).to_list(length=None)
        unread = {row["_id"]: row["count"] for row in unread_rows}

        others = {c["_id"]: _other_participant(c, user) for c in conversations}
        users = await self._public_users(o for o in others.values() if o is not None)

        return [
            ConversationOut(
                id=str(c["_id"]),
                other_user=UserPublic.from_doc(users.get(others[c["_id"]])),
                last_message=c.get("last_message", ""),
                last_message_time=c.get("last_message_time"),
                created_at=c.get("created_at"),
                unread_count=unread.get(c["_id"], 0),
            )
            for c in conversations
        ]

    async def append_message(self, conversation_id, sender_id, receiver_id, body: str) -> MessageOut:
        sender = _user_oid(sender_id)
        conversation = await self._member_conversation(conversation_id, sender)

        receiver = _other_participant(conversation, sender)
        if receiver_id is not None and parse_oid(receiver_id) != receiver:
            raise ValidationError.for_field("receiverId", "must be the other participant of the conversation")
        if not body or not body.strip():
            raise ValidationError.for_field("message", "must not be empty")
        if len(body) > MAX_MESSAGE_LENGTH:
            raise ValidationError.for_field("message", f"must be {MAX_MESSAGE_LENGTH} characters or less")

        now = datetime.now(timezone.utc)
        doc = {
            "conversation_id": conversation["_id"],
            "sender_id": sender,
            "receiver_id": receiver,
            "message": body,
            "read": False,
            "created_at": now,
        }
        async with driver_errors():
            result = await self.messages.insert_one(doc)
            doc["_id"] = result.inserted_id
            await self.conversations.update_one(
                {"_id": conversation["_id"]},
                {"$set": {
                    "last_message": body[:LAST_MESSAGE_PREVIEW_LENGTH],
                    "last_message_time": now,
                }},
            )

        logger.info("💬 Message sent in conversation %s", conversation["_id"])
        users = await self._public_users([sender, receiver])
        return MessageOut.from_doc(doc, users)

    async def list_messages(self, conversation_id, requester_id) -> List[MessageOut]:
        """Messages oldest-first; everything addressed to the requester becomes read."""
        requester = _user_oid(requester_id)
        conversation = await self._member_conversation(conversation_id, requester)

        async with driver_errors():
            await self.messages.update_many(
                {"conversation_id": conversation["_id"], "receiver_id": requester, "read": False},
                {"$set": {"read": True}},
            )
            messages = await self.messages.find({"conversation_id": conversation["_id"]}).sort(
                [("created_at", ASCENDING), ("_id", ASCENDING)]
            ).to_list(length=None)

        users = await self._public_users(conversation["participants"])
        return [MessageOut.from_doc(m, users) for m in messages]
