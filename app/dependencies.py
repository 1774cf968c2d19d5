from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.database import get_db
from app.services.conversation_store import ConversationStore
from app.services.email import EmailService, email_service
from app.services.listing_store import ListingStore
from app.services.realtime import ConversationHub, hub
from app.services.saved_post_store import SavedPostStore
from app.services.user_store import UserStore
from app.utils.cloudinary import upload_image_to_cloudinary


def get_listing_store(db: AsyncIOMotorDatabase = Depends(get_db)) -> ListingStore:
    return ListingStore(db)


def get_conversation_store(db: AsyncIOMotorDatabase = Depends(get_db)) -> ConversationStore:
    return ConversationStore(db)


def get_saved_post_store(db: AsyncIOMotorDatabase = Depends(get_db)) -> SavedPostStore:
    return SavedPostStore(db)


def get_user_store(db: AsyncIOMotorDatabase = Depends(get_db)) -> UserStore:
    return UserStore(db)


def get_hub() -> ConversationHub:
    return hub


def get_email_service() -> EmailService:
    return email_service


def get_image_uploader():
    return upload_image_to_cloudinary
