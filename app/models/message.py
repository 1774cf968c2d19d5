from datetime import datetime
from typing import Dict, Optional

from pydantic import Field

from app.models.base import ApiModel
from app.models.user import UserPublic

MAX_MESSAGE_LENGTH = 1000


class ConversationCreate(ApiModel):
    other_user_id: str


class MessageCreate(ApiModel):
    conversation_id: str
    receiver_id: str
    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH,
                         description="Message must be 1000 characters or less")


class MessageOut(ApiModel):
    id: str
    conversation_id: str
    sender: Optional[UserPublic] = None
    receiver: Optional[UserPublic] = None
    message: str
    read: bool = False
    created_at: datetime

    @classmethod
    def from_doc(cls, doc: dict, users: Dict) -> "MessageOut":
        return cls(
            id=str(doc["_id"]),
            conversation_id=str(doc["conversation_id"]),
            sender=UserPublic.from_doc(users.get(doc["sender_id"])) or UserPublic(id=str(doc["sender_id"])),
            receiver=UserPublic.from_doc(users.get(doc["receiver_id"])) or UserPublic(id=str(doc["receiver_id"])),
            message=doc["message"],
            read=doc.get("read", False),
            created_at=doc["created_at"],
        )


class ConversationOut(ApiModel):
    id: str
    other_user: Optional[UserPublic] = None
    last_message: str = ""
    last_message_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    unread_count: int = 0
