from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import EmailStr, Field, field_validator, model_validator

from app.models.base import ApiModel


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"


class UserCreate(ApiModel):
    fullname: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(..., min_length=1, max_length=20)
    age: int = Field(..., ge=18, le=100, description="Age must be between 18 and 100")
    gender: Gender
    occupation: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=6)
    confirm: str
    terms: bool

    @field_validator("fullname", "phone", "occupation")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("This field is required")
        return v

    @model_validator(mode="after")
    def check_password_and_terms(self):
        if self.password != self.confirm:
            raise ValueError("Passwords do not match.")
        if not self.terms:
            raise ValueError("You must accept the terms and conditions.")
        return self


class LoginRequest(ApiModel):
    email: str
    password: str


class ProfileUpdate(ApiModel):
    fullname: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=1, max_length=20)
    age: int = Field(..., ge=18, le=100, description="Age must be between 18 and 100")
    gender: Gender
    occupation: str = Field(..., min_length=1, max_length=100)

    @field_validator("fullname", "phone", "occupation")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("This field is required")
        return v


class OtpVerify(ApiModel):
    otp: str = Field(..., min_length=1, max_length=10)


class UserPublic(ApiModel):
    id: str
    fullname: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_doc(cls, doc: Optional[dict]) -> Optional["UserPublic"]:
        if not doc:
            return None
        return cls(id=str(doc["_id"]), fullname=doc.get("fullname"), email=doc.get("email"))


class ProfileResponse(ApiModel):
    id: str
    fullname: str
    email: str
    phone: str
    age: int
    gender: Gender
    occupation: str
    email_verified: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: dict) -> "ProfileResponse":
        return cls(
            id=str(doc["_id"]),
            fullname=doc["fullname"],
            email=doc["email"],
            phone=doc["phone"],
            age=doc["age"],
            gender=doc["gender"],
            occupation=doc["occupation"],
            email_verified=doc.get("email_verified", False),
            created_at=doc.get("created_at"),
        )
