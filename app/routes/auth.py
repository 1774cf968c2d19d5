from fastapi import APIRouter, Depends

from app.dependencies import get_user_store
from app.models.user import LoginRequest, UserCreate, UserPublic
from app.services.user_store import UserStore
from app.utils.auth import create_access_token

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post("/register", status_code=201)
async def register(data: UserCreate, users: UserStore = Depends(get_user_store)):
    user = await users.register(data)
    return {
        "success": True,
        "message": "Registration successful",
        "user": UserPublic.from_doc(user),
    }


@router.post("/login")
async def login(data: LoginRequest, users: UserStore = Depends(get_user_store)):
    user = await users.authenticate(data.email, data.password)

    access_token = create_access_token({
        "sub": str(user["_id"]),
        "email": user["email"],
        "name": user.get("fullname"),
    })

    return {
        "success": True,
        "message": "Login successful!",
        "access_token": access_token,
        "token_type": "bearer",
        "user": UserPublic.from_doc(user),
    }
