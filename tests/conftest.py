import os

# Settings must be in place before any app module is imported
os.environ["JWT_SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["SMTP_USER"] = ""
os.environ["SMTP_PASSWORD"] = ""

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from app.database import ensure_indexes, get_db
from app.dependencies import get_image_uploader
from app.main import app
from app.utils.auth import create_access_token, hash_password

PASSWORD = "secret123"
PASSWORD_HASH = hash_password(PASSWORD)

_user_seq = count(1)
_image_seq = count(1)


@pytest_asyncio.fixture
async def mongo_db():
    db = AsyncMongoMockClient()["flatmatefinder_test"]
    await ensure_indexes(db)
    yield db


@pytest.fixture
def uploaded_images():
    return []


@pytest.fixture
def fake_uploader(uploaded_images):
    async def upload(content: bytes, content_type: str) -> str:
        url = f"https://res.cloudinary.com/demo/image/upload/v1/flatmate-finder-uploads/img{next(_image_seq)}.jpg"
        uploaded_images.append(url)
        return url
    return upload


@pytest_asyncio.fixture
async def client(mongo_db, fake_uploader):
    app.dependency_overrides[get_db] = lambda: mongo_db
    app.dependency_overrides[get_image_uploader] = lambda: fake_uploader
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def token_for(user: dict) -> str:
    return create_access_token({
        "sub": str(user["_id"]),
        "email": user["email"],
        "name": user.get("fullname"),
    })


def auth_headers(user: dict) -> dict:
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture
def make_user(mongo_db):
    async def _make_user(fullname: str = None, **overrides) -> dict:
        n = next(_user_seq)
        doc = {
            "fullname": fullname or f"User {n}",
            "email": f"user{n}@example.com",
            "phone": "9876543210",
            "age": 25,
            "gender": "Female",
            "occupation": "Engineer",
            "password": PASSWORD_HASH,
            "email_verified": False,
            "created_at": datetime.now(timezone.utc),
        }
        doc.update(overrides)
        result = await mongo_db.users.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc
    return _make_user


@pytest.fixture
def make_listing(mongo_db):
    base_time = datetime(2024, 1, 1, tzinfo=timezone.utc)
    seq = count(0)

    async def _make_listing(owner: dict, **fields) -> dict:
        n = next(seq)
        doc = {
            "user_id": owner["_id"],
            "user_email": owner["email"],
            "images": [],
            "price": 10000,
            "furnishing": "Furnished",
            "state": "Karnataka",
            "city": "Bengaluru",
            "location": "Koramangala",
            "prefs": [],
            "gender": "Any",
            "notes": None,
            "created_at": base_time + timedelta(hours=n),
            "updated_at": base_time + timedelta(hours=n),
        }
        doc.update(fields)
        result = await mongo_db.listings.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc
    return _make_listing
