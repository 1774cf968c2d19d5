import asyncio
import logging
from typing import List, Set

from app.utils.cloudinary import delete_image_from_cloudinary

logger = logging.getLogger(__name__)

# Strong references so scheduled cleanups are not garbage collected mid-flight
_pending: Set[asyncio.Task] = set()


async def delete_listing_images(listing_id: str, urls: List[str]) -> int:
    """Delete every image independently; failures are logged, never raised.

    Returns the number of images that were removed.
    """
    results = await asyncio.gather(
        *(delete_image_from_cloudinary(url) for url in urls),
        return_exceptions=True,
    )

    failed = 0
    for url, result in zip(urls, results):
        if isinstance(result, BaseException):
            failed += 1
            logger.warning("⚠️ Failed to delete image %s of listing %s: %s", url, listing_id, result)

    deleted = len(urls) - failed
    if failed:
        logger.warning("Image cleanup for listing %s: %d deleted, %d failed", listing_id, deleted, failed)
    else:
        logger.info("🧼 Image cleanup for listing %s: %d deleted", listing_id, deleted)
    return deleted


def schedule_image_cleanup(listing_id: str, urls: List[str]):
    """Fire-and-forget removal of a deleted listing's images."""
    if not urls:
        return None
    task = asyncio.create_task(delete_listing_images(listing_id, list(urls)))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


async def wait_for_pending_cleanups():
    """Wait for in-flight cleanups; used on shutdown."""
    if _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)
