from typing import Optional

from fastapi import APIRouter, Depends

from app.dependencies import get_email_service, get_user_store
from app.models.user import OtpVerify, ProfileResponse, ProfileUpdate
from app.services.email import EmailService
from app.services.user_store import UserStore
from app.utils.auth import TokenUser, get_current_user, get_optional_user

router = APIRouter(prefix="/api", tags=["Users"])


# GET /api/user - who is logged in, if anyone
@router.get("/user")
async def get_session_user(user: Optional[TokenUser] = Depends(get_optional_user)):
    if not user:
        return {"success": True, "loggedIn": False}
    return {
        "success": True,
        "loggedIn": True,
        "userId": user.id,
        "userEmail": user.email,
        "userName": user.name,
    }


@router.get("/profile")
async def get_profile(user: TokenUser = Depends(get_current_user),
                      users: UserStore = Depends(get_user_store)):
    user_doc = await users.get(user.id)
    return {"success": True, "profile": ProfileResponse.from_doc(user_doc)}


@router.put("/profile")
async def update_profile(data: ProfileUpdate,
                         user: TokenUser = Depends(get_current_user),
                         users: UserStore = Depends(get_user_store)):
    user_doc = await users.update_profile(user.id, data)
    return {
        "success": True,
        "message": "Profile updated successfully",
        "profile": ProfileResponse.from_doc(user_doc),
    }


@router.post("/send-otp")
async def send_otp(user: TokenUser = Depends(get_current_user),
                   users: UserStore = Depends(get_user_store),
                   mailer: EmailService = Depends(get_email_service)):
    user_doc = await users.get(user.id)
    otp = await users.create_otp(user_doc["email"])
    await mailer.send_otp(user_doc["email"], user_doc.get("fullname", ""), otp)
    return {"success": True, "message": "OTP sent to your email"}


@router.post("/verify-otp")
async def verify_otp(data: OtpVerify,
                     user: TokenUser = Depends(get_current_user),
                     users: UserStore = Depends(get_user_store)):
    await users.verify_otp(user.id, data.otp)
    return {"success": True, "message": "Email verified successfully"}
