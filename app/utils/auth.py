import jwt
import bcrypt
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from app import config
from app.database import get_db
from app.errors import Unauthenticated, driver_errors
from app.utils.objectid import parse_oid


class TokenUser(BaseModel):
    id: str
    email: str
    name: Optional[str] = None


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthenticated("Invalid token")


def token_user_from(token: str) -> TokenUser:
    payload = decode_access_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthenticated("Invalid token")
    return TokenUser(id=user_id, email=payload.get("email", ""), name=payload.get("name"))


async def user_from_token(token: str, db: AsyncIOMotorDatabase) -> TokenUser:
    """Decode ``token`` and make sure its user still exists."""
    user = token_user_from(token)
    oid = parse_oid(user.id)
    async with driver_errors():
        user_doc = await db.users.find_one({"_id": oid}, {"email": 1, "fullname": 1}) if oid else None
    if not user_doc:
        raise Unauthenticated("User not found")
    return TokenUser(id=str(user_doc["_id"]), email=user_doc["email"], name=user_doc.get("fullname"))


async def get_current_user(token: str = Depends(oauth2_scheme),
                           db: AsyncIOMotorDatabase = Depends(get_db)) -> TokenUser:
    return await user_from_token(token, db)


async def get_optional_user(token: Optional[str] = Depends(optional_oauth2_scheme),
                            db: AsyncIOMotorDatabase = Depends(get_db)) -> Optional[TokenUser]:
    if not token:
        return None
    try:
        return await user_from_token(token, db)
    except Unauthenticated:
        return None
