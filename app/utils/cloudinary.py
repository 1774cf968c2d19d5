import asyncio
import logging
import re
from typing import Optional

import cloudinary
import cloudinary.uploader

from app import config
from app.errors import ExternalServiceError

logger = logging.getLogger(__name__)

cloudinary.config(
    cloud_name=config.CLOUDINARY_CLOUD_NAME,
    api_key=config.CLOUDINARY_API_KEY,
    api_secret=config.CLOUDINARY_API_SECRET,
    secure=True,
)

# e.g. https://res.cloudinary.com/<cloud>/image/upload/v123/flatmate-finder-uploads/abc.jpg
_PUBLIC_ID_RE = re.compile(rf"{re.escape(config.CLOUDINARY_FOLDER)}/([^./?#]+)")


def public_id_from_url(url: str) -> Optional[str]:
    match = _PUBLIC_ID_RE.search(url or "")
    if not match:
        return None
    return f"{config.CLOUDINARY_FOLDER}/{match.group(1)}"


async def upload_image_to_cloudinary(file_contents: bytes, content_type: str) -> str:
    """
    Runs the synchronous Cloudinary upload in a worker thread, bounded by the
    storage timeout, and returns the stored image's secure URL.
    """
    try:
        result = await asyncio.wait_for(
            asyncio.to_thread(
                cloudinary.uploader.upload,
                file_contents,
                folder=config.CLOUDINARY_FOLDER,
                resource_type="image",
            ),
            timeout=config.STORAGE_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as e:
        raise ExternalServiceError("Image upload timed out") from e
    except Exception as e:
        raise ExternalServiceError(f"Image upload failed: {e}") from e

    url = result.get("secure_url") or result.get("url")
    if not url:
        raise ExternalServiceError("Image upload returned no URL")
    logger.debug("Uploaded %s image as %s", content_type, result.get("public_id"))
    return url


async def delete_image_from_cloudinary(url: str):
    public_id = public_id_from_url(url)
    if not public_id:
        raise ExternalServiceError(f"Cannot derive a public id from {url!r}")
    try:
        result = await asyncio.wait_for(
            asyncio.to_thread(cloudinary.uploader.destroy, public_id),
            timeout=config.STORAGE_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as e:
        raise ExternalServiceError(f"Deleting {public_id} timed out") from e
    except Exception as e:
        raise ExternalServiceError(f"Deleting {public_id} failed: {e}") from e
    if result.get("result") not in ("ok", "not found"):
        raise ExternalServiceError(f"Deleting {public_id} failed: {result}")
    return public_id
