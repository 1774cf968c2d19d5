from datetime import datetime
from typing import List, Optional

from pydantic import Field

from app.models.base import ApiModel
from app.models.user import UserPublic


class ListingUpdate(ApiModel):
    price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    furnishing: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    location: Optional[str] = None
    prefs: Optional[List[str]] = None
    gender: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=2000)


class ListingOut(ApiModel):
    id: str
    user_id: str
    user_email: Optional[str] = None
    owner: Optional[UserPublic] = None
    images: List[str] = Field(default_factory=list)
    price: Optional[float] = None
    furnishing: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    location: Optional[str] = None
    prefs: List[str] = Field(default_factory=list)
    gender: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: dict, owner: Optional[dict] = None) -> "ListingOut":
        return cls(
            id=str(doc["_id"]),
            user_id=str(doc["user_id"]),
            user_email=doc.get("user_email"),
            owner=UserPublic.from_doc(owner),
            images=doc.get("images", []),
            price=doc.get("price"),
            furnishing=doc.get("furnishing"),
            state=doc.get("state"),
            city=doc.get("city"),
            location=doc.get("location"),
            prefs=doc.get("prefs", []),
            gender=doc.get("gender"),
            notes=doc.get("notes"),
            created_at=doc.get("created_at"),
            updated_at=doc.get("updated_at"),
        )


class Pagination(ApiModel):
    current_page: int
    total_pages: int
    total_count: int
    has_next_page: bool
    has_prev_page: bool
    limit: int


class CountBucket(ApiModel):
    value: Optional[str] = None
    count: int


class SearchStats(ApiModel):
    total_listings: int
    top_states: List[CountBucket]
    average_price: int
    top_preferences: List[CountBucket]
    furnishing_distribution: List[CountBucket]
