import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING, ReturnDocument

from app import config
from app.errors import Unauthenticated, ValidationError, driver_errors
from app.models.listing import CountBucket, SearchStats
from app.tasks.image_cleanup import schedule_image_cleanup
from app.utils.objectid import parse_oid

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]
TEXT_FIELDS = ("furnishing", "state", "city", "location", "gender", "notes")
REQUIRED_FIELDS = ("state", "city", "location")


def _owner_oid(owner_id) -> ObjectId:
    oid = parse_oid(owner_id) if owner_id else None
    if oid is None:
        raise Unauthenticated()
    return oid


def validate_new_listing(fields: dict) -> dict:
    """Clean the fields of a listing about to be created, or raise ValidationError."""
    cleaned = _clean_fields(fields)
    missing = [
        {"field": name, "message": "This field is required"}
        for name in REQUIRED_FIELDS if not cleaned.get(name)
    ]
    if missing:
        raise ValidationError("Missing required fields", errors=missing)
    return cleaned


def _clean_fields(fields: dict) -> dict:
    cleaned = {}
    for name in TEXT_FIELDS:
        if fields.get(name) is not None:
            cleaned[name] = str(fields[name]).strip()
    if "prefs" in fields and fields["prefs"] is not None:
        cleaned["prefs"] = [str(p).strip() for p in fields["prefs"] if str(p).strip()]
    if "price" in fields:
        price = fields["price"]
        if price is not None:
            try:
                price = float(price)
            except (TypeError, ValueError):
                raise ValidationError.for_field("price", "must be a number")
            if not math.isfinite(price):
                raise ValidationError.for_field("price", "must be a finite number")
            if price < 0:
                raise ValidationError.for_field("price", "must not be negative")
        cleaned["price"] = price
    return cleaned


class ListingStore:
    """Persistence for flatmate listings (the ``listings`` collection)."""

    def __init__(self, db: AsyncIOMotorDatabase,
                 cleanup: Callable[[str, List[str]], object] = schedule_image_cleanup):
        self.db = db
        self.listings = db.listings
        self.cleanup = cleanup

    async def create(self, owner_id: str, owner_email: Optional[str], fields: dict,
                     images: Optional[List[str]] = None) -> str:
        owner = _owner_oid(owner_id)
        images = list(images or [])
        cleaned = validate_new_listing(fields)
        if len(images) > config.MAX_IMAGES_PER_LISTING:
            raise ValidationError.for_field(
                "images", f"at most {config.MAX_IMAGES_PER_LISTING} images are allowed"
            )

        now = datetime.now(timezone.utc)
        doc = {
            "user_id": owner,
            "user_email": owner_email,
            "images": images,
            "price": cleaned.get("price"),
            "furnishing": cleaned.get("furnishing"),
            "state": cleaned["state"],
            "city": cleaned["city"],
            "location": cleaned["location"],
            "prefs": cleaned.get("prefs", []),
            "gender": cleaned.get("gender"),
            "notes": cleaned.get("notes"),
            "created_at": now,
            "updated_at": now,
        }
        async with driver_errors():
            result = await self.listings.insert_one(doc)
        logger.info("✅ New listing %s created by %s", result.inserted_id, owner_email or owner_id)
        return str(result.inserted_id)

    async def get(self, listing_id) -> Optional[dict]:
        oid = parse_oid(listing_id)
        if oid is None:
            return None
        async with driver_errors():
            return await self.listings.find_one({"_id": oid})

    async def find_page(self, query: dict, sort: List[Tuple[str, int]], offset: int,
                        limit: int) -> Tuple[List[dict], int]:
        # count and page are fetched concurrently and may disagree under concurrent writes
        cursor = self.listings.find(query).sort(sort).skip(offset).limit(limit)
        async with driver_errors():
            items, total = await asyncio.gather(
                cursor.to_list(length=limit),
                self.listings.count_documents(query),
            )
        return items, total

    async def find_all(self) -> List[dict]:
        async with driver_errors():
            return await self.listings.find({}).sort(NEWEST_FIRST).to_list(length=None)

    async def find_by_owner(self, owner_id) -> List[dict]:
        owner = _owner_oid(owner_id)
        async with driver_errors():
            return await self.listings.find({"user_id": owner}).sort(NEWEST_FIRST).to_list(length=None)

    async def update_owned(self, listing_id, owner_id, fields: dict) -> Optional[dict]:
        """Apply ``fields`` if the listing exists and belongs to ``owner_id``.

        Returns the updated listing, or None when it is missing or not owned.
        """
        owner = _owner_oid(owner_id)
        listing = await self.get(listing_id)
        if not listing or listing["user_id"] != owner:
            return None

        updates = _clean_fields(fields)
        for name in REQUIRED_FIELDS:
            if name in updates and not updates[name]:
                raise ValidationError.for_field(name, "must not be blank")
        updates["updated_at"] = datetime.now(timezone.utc)

        async with driver_errors():
            return await self.listings.find_one_and_update(
                {"_id": listing["_id"], "user_id": owner},
                {"$set": updates},
                return_document=ReturnDocument.AFTER,
            )

    async def delete_owned(self, listing_id, owner_id) -> bool:
        """Delete a listing only when ``owner_id`` owns it.

        Missing and not-owned listings both return False. Stored images are
        removed afterwards without waiting; their failures never affect the result.
        """
        owner = _owner_oid(owner_id)
        listing = await self.get(listing_id)
        if not listing or listing["user_id"] != owner:
            return False

        async with driver_errors():
            result = await self.listings.delete_one({"_id": listing["_id"], "user_id": owner})
            if result.deleted_count == 0:
                return False
            await self.db.saved_posts.delete_many({"post_id": listing["_id"]})

        logger.info("🗑️ Listing %s deleted by user %s", listing["_id"], owner)
        self.cleanup(str(listing["_id"]), listing.get("images", []))
        return True

    async def owners_for(self, listings: Iterable[dict]) -> Dict[ObjectId, dict]:
        owner_ids = list({listing["user_id"] for listing in listings})
        if not owner_ids:
            return {}
        async with driver_errors():
            owners = await self.db.users.find(
                {"_id": {"$in": owner_ids}},
                {"fullname": 1, "email": 1},
            ).to_list(length=None)
        return {owner["_id"]: owner for owner in owners}

    async def stats(self) -> SearchStats:
        def by_count(field: str, limit: Optional[int] = None) -> list:
            pipeline = [
                {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
                {"$sort": {"count": -1, "_id": 1}},
            ]
            if limit:
                pipeline.append({"$limit": limit})
            return pipeline

        async with driver_errors():
            total, states, avg, prefs, furnishing = await asyncio.gather(
                self.listings.count_documents({}),
                self.listings.aggregate(by_count("state", 10)).to_list(length=None),
                self.listings.aggregate([
                    {"$match": {"price": {"$ne": None}}},
                    {"$group": {"_id": None, "avg_price": {"$avg": "$price"}}},
                ]).to_list(length=None),
                self.listings.aggregate([{"$unwind": "$prefs"}] + by_count("prefs", 10)).to_list(length=None),
                self.listings.aggregate(by_count("furnishing")).to_list(length=None),
            )

        def buckets(rows):
            return [CountBucket(value=row["_id"], count=row["count"]) for row in rows]

        average = avg[0].get("avg_price") if avg else None
        return SearchStats(
            total_listings=total,
            top_states=buckets(states),
            average_price=round(average or 0),
            top_preferences=buckets(prefs),
            furnishing_distribution=buckets(furnishing),
        )
