import logging
from datetime import datetime, timezone
from typing import List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from app.errors import NotFound, Unauthenticated, driver_errors
from app.utils.objectid import parse_oid

logger = logging.getLogger(__name__)


class SavedPostStore:
    """Per-user bookmarks; at most one row per (user, post)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.saved_posts = db.saved_posts

    @staticmethod
    def _user(user_id):
        oid = parse_oid(user_id) if user_id else None
        if oid is None:
            raise Unauthenticated()
        return oid

    async def save(self, user_id, post_id) -> bool:
        """Save a post. Returns False when it was already saved."""
        user = self._user(user_id)
        post = parse_oid(post_id)

        async with driver_errors():
            if post is None or not await self.db.listings.find_one({"_id": post}, {"_id": 1}):
                raise NotFound("Post not found")
            try:
                await self.saved_posts.insert_one({
                    "user_id": user,
                    "post_id": post,
                    "saved_at": datetime.now(timezone.utc),
                })
            except DuplicateKeyError:
                return False

        logger.info("✅ Post %s saved by user %s", post, user)
        return True

    async def unsave(self, user_id, post_id) -> bool:
        user = self._user(user_id)
        post = parse_oid(post_id)
        if post is None:
            return False
        async with driver_errors():
            result = await self.saved_posts.delete_one({"user_id": user, "post_id": post})
        return result.deleted_count > 0

    async def is_saved(self, user_id, post_id) -> bool:
        user = self._user(user_id)
        post = parse_oid(post_id)
        if post is None:
            return False
        async with driver_errors():
            return await self.saved_posts.find_one({"user_id": user, "post_id": post}) is not None

    async def list_saved(self, user_id) -> List[dict]:
        """Saved listings, most recently saved first. Deleted posts are skipped."""
        user = self._user(user_id)
        async with driver_errors():
            rows = await self.saved_posts.find({"user_id": user}).sort(
                [("saved_at", DESCENDING), ("_id", DESCENDING)]
            ).to_list(length=None)
            post_ids = [row["post_id"] for row in rows]
            posts = await self.db.listings.find({"_id": {"$in": post_ids}}).to_list(length=None)

        by_id = {p["_id"]: p for p in posts}
        return [by_id[pid] for pid in post_ids if pid in by_id]
