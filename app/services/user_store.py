import logging
import secrets
from datetime import datetime, timedelta, timezone

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from app import config
from app.errors import Conflict, NotFound, Unauthenticated, ValidationError, driver_errors
from app.models.user import ProfileUpdate, UserCreate
from app.utils.auth import hash_password, verify_password
from app.utils.objectid import parse_oid

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class UserStore:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.users = db.users

    async def register(self, data: UserCreate) -> dict:
        email = data.email.lower()
        doc = {
            "fullname": data.fullname,
            "email": email,
            "phone": data.phone,
            "age": data.age,
            "gender": data.gender.value,
            "occupation": data.occupation,
            "password": hash_password(data.password),
            "email_verified": False,
            "created_at": datetime.now(timezone.utc),
        }
        async with driver_errors(conflict_message="User with this email already exists."):
            if await self.users.find_one({"email": email}, {"_id": 1}):
                raise Conflict("User with this email already exists.")
            result = await self.users.insert_one(doc)
        doc["_id"] = result.inserted_id
        logger.info("✅ New user registered: %s", email)
        return doc

    async def authenticate(self, email: str, password: str) -> dict:
        async with driver_errors():
            user = await self.users.find_one({"email": (email or "").strip().lower()})
        if not user or not verify_password(password, user.get("password", "")):
            raise Unauthenticated("Invalid email or password")
        logger.info("✅ User logged in: %s", user["email"])
        return user

    async def get(self, user_id) -> dict:
        oid = parse_oid(user_id)
        if oid is None:
            raise NotFound("User not found")
        async with driver_errors():
            user = await self.users.find_one({"_id": oid}, {"password": 0})
        if not user:
            raise NotFound("User not found")
        return user

    async def update_profile(self, user_id, data: ProfileUpdate) -> dict:
        oid = parse_oid(user_id)
        if oid is None:
            raise NotFound("User not found")
        async with driver_errors():
            user = await self.users.find_one_and_update(
                {"_id": oid},
                {"$set": {
                    "fullname": data.fullname,
                    "phone": data.phone,
                    "age": data.age,
                    "gender": data.gender.value,
                    "occupation": data.occupation,
                }},
                projection={"password": 0},
                return_document=ReturnDocument.AFTER,
            )
        if not user:
            raise NotFound("User not found")
        logger.info("✅ Profile updated: %s", user["email"])
        return user

    async def create_otp(self, email: str) -> str:
        """Replace any pending code for ``email`` with a fresh 6-digit one."""
        otp = f"{secrets.randbelow(900000) + 100000}"
        async with driver_errors():
            await self.db.otps.delete_many({"email": email})
            await self.db.otps.insert_one({
                "email": email,
                "otp": otp,
                "created_at": datetime.now(timezone.utc),
            })
        return otp

    async def verify_otp(self, user_id, otp: str) -> dict:
        user = await self.get(user_id)
        async with driver_errors():
            record = await self.db.otps.find_one({"email": user["email"], "otp": otp.strip()})

        # the TTL index only sweeps periodically, so check the age here too
        expires_before = datetime.now(timezone.utc) - timedelta(seconds=config.OTP_TTL_SECONDS)
        if not record or _as_utc(record["created_at"]) < expires_before:
            raise ValidationError.for_field("otp", "Invalid or expired OTP")

        async with driver_errors():
            await self.users.update_one({"_id": user["_id"]}, {"$set": {"email_verified": True}})
            await self.db.otps.delete_many({"email": user["email"]})
        logger.info("✅ Email verified: %s", user["email"])
        user["email_verified"] = True
        return user
