from fastapi import APIRouter, Depends

from app.dependencies import get_listing_store, get_saved_post_store
from app.models.listing import ListingOut
from app.services.listing_store import ListingStore
from app.services.saved_post_store import SavedPostStore
from app.utils.auth import TokenUser, get_current_user

router = APIRouter(prefix="/api", tags=["Saved Posts"])


@router.post("/save-post/{post_id}")
async def save_post(post_id: str,
                    user: TokenUser = Depends(get_current_user),
                    saved: SavedPostStore = Depends(get_saved_post_store)):
    if not await saved.save(user.id, post_id):
        return {"success": True, "message": "Post already saved", "alreadySaved": True}
    return {"success": True, "message": "Post saved successfully", "alreadySaved": False}


@router.delete("/save-post/{post_id}")
async def unsave_post(post_id: str,
                      user: TokenUser = Depends(get_current_user),
                      saved: SavedPostStore = Depends(get_saved_post_store)):
    await saved.unsave(user.id, post_id)
    return {"success": True, "message": "Post unsaved successfully"}


@router.get("/saved-posts")
async def get_saved_posts(user: TokenUser = Depends(get_current_user),
                          saved: SavedPostStore = Depends(get_saved_post_store),
                          listings: ListingStore = Depends(get_listing_store)):
    posts = await saved.list_saved(user.id)
    owners = await listings.owners_for(posts)
    return {
        "success": True,
        "data": [ListingOut.from_doc(post, owners.get(post["user_id"])) for post in posts],
    }


@router.get("/check-saved/{post_id}")
async def check_saved(post_id: str,
                      user: TokenUser = Depends(get_current_user),
                      saved: SavedPostStore = Depends(get_saved_post_store)):
    return {"success": True, "isSaved": await saved.is_saved(user.id, post_id)}
