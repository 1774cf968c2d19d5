import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from app import config
from app.dependencies import get_image_uploader, get_listing_store
from app.errors import ExternalServiceError, NotFound, ValidationError
from app.models.listing import ListingOut, ListingUpdate
from app.services.listing_store import ListingStore, validate_new_listing
from app.services.query_translator import paginate, translate
from app.utils.auth import TokenUser, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Listings"])


async def _with_owners(listings: ListingStore, docs: List[dict]) -> List[ListingOut]:
    owners = await listings.owners_for(docs)
    return [ListingOut.from_doc(doc, owners.get(doc["user_id"])) for doc in docs]


async def _read_images(images: List[UploadFile]) -> List[tuple]:
    files = [f for f in images if f.filename]
    if len(files) > config.MAX_IMAGES_PER_LISTING:
        raise ValidationError.for_field(
            "images", f"at most {config.MAX_IMAGES_PER_LISTING} images are allowed"
        )

    contents = []
    for file in files:
        if file.content_type not in config.ALLOWED_IMAGE_TYPES:
            raise ValidationError.for_field(
                "images", f"{file.filename}: only {', '.join(config.ALLOWED_IMAGE_TYPES)} are allowed"
            )
        # Read file once and check size
        content = await file.read()
        if len(content) > config.MAX_IMAGE_SIZE_BYTES:
            raise ValidationError.for_field(
                "images", f"{file.filename} is too large. Max allowed is {config.MAX_IMAGE_SIZE_MB}MB."
            )
        contents.append((file.filename, file.content_type, content))
    return contents


@router.post("/post-requirement", status_code=201)
async def create_post(
    price: Optional[str] = Form(None),
    furnishing: Optional[str] = Form(None),
    state: Optional[str] = Form(None),
    city: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    prefs: List[str] = Form([]),
    gender: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    images: List[UploadFile] = File([]),
    user: TokenUser = Depends(get_current_user),
    listings: ListingStore = Depends(get_listing_store),
    upload=Depends(get_image_uploader),
):
    fields = {
        "price": price if price and price.strip() else None,
        "furnishing": furnishing,
        "state": state,
        "city": city,
        "location": location,
        "prefs": prefs,
        "gender": gender,
        "notes": notes,
    }
    # validate before anything is uploaded
    validate_new_listing(fields)
    files = await _read_images(images)

    urls = []
    failed = 0
    for filename, content_type, content in files:
        try:
            urls.append(await upload(content, content_type))
        except ExternalServiceError as e:
            failed += 1
            logger.warning("⚠️ Skipping image %s for %s: %s", filename, user.email, e.message)

    post_id = await listings.create(user.id, user.email, fields, urls)

    return {
        "success": True,
        "message": "Post created successfully",
        "postId": post_id,
        "uploadedImages": len(urls),
        "failedImages": failed,
    }


@router.get("/my-posts")
async def get_my_posts(user: TokenUser = Depends(get_current_user),
                       listings: ListingStore = Depends(get_listing_store)):
    docs = await listings.find_by_owner(user.id)
    return {"success": True, "data": [ListingOut.from_doc(doc) for doc in docs]}


@router.put("/my-posts/{post_id}")
async def update_my_post(post_id: str, data: ListingUpdate,
                         user: TokenUser = Depends(get_current_user),
                         listings: ListingStore = Depends(get_listing_store)):
    updated = await listings.update_owned(post_id, user.id, data.model_dump(exclude_unset=True))
    if not updated:
        raise NotFound("Post not found or you are not authorized to modify it.")
    return {"success": True, "message": "Post updated successfully", "data": ListingOut.from_doc(updated)}


@router.delete("/my-posts/{post_id}")
async def delete_my_post(post_id: str,
                         user: TokenUser = Depends(get_current_user),
                         listings: ListingStore = Depends(get_listing_store)):
    if not await listings.delete_owned(post_id, user.id):
        raise NotFound("Post not found or you are not authorized to delete it.")
    return {"success": True, "message": "Post deleted successfully."}


@router.get("/requirements")
async def get_all_posts(listings: ListingStore = Depends(get_listing_store)):
    docs = await listings.find_all()
    return {"success": True, "data": await _with_owners(listings, docs)}


@router.get("/search-flatmates")
async def search_flatmates(
    state: Optional[str] = None,
    city: Optional[str] = None,
    location: Optional[str] = None,
    min_price: Optional[str] = Query(None, alias="minPrice"),
    max_price: Optional[str] = Query(None, alias="maxPrice"),
    furnishing: Optional[str] = None,
    gender: Optional[str] = None,
    preferences: List[str] = Query([]),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    page: Optional[str] = None,
    limit: Optional[str] = None,
    listings: ListingStore = Depends(get_listing_store),
):
    query = translate({
        "state": state,
        "city": city,
        "location": location,
        "minPrice": min_price,
        "maxPrice": max_price,
        "furnishing": furnishing,
        "gender": gender,
        "preferences": preferences,
        "sortBy": sort_by,
        "page": page,
        "limit": limit,
    })

    docs, total_count = await listings.find_page(query.filter, query.sort, query.offset, query.limit)

    return {
        "success": True,
        "data": await _with_owners(listings, docs),
        "pagination": paginate(total_count, query.page, query.limit),
    }


@router.get("/search-stats")
async def search_stats(listings: ListingStore = Depends(get_listing_store)):
    return {"success": True, "stats": await listings.stats()}
