from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bson import ObjectId

from app.errors import ExternalServiceError, Unauthenticated, ValidationError
from app.services.listing_store import ListingStore
from app.services.query_translator import translate
from app.tasks.image_cleanup import delete_listing_images, wait_for_pending_cleanups


@pytest.fixture
def cleanup():
    return MagicMock()


@pytest.fixture
def store(mongo_db, cleanup):
    return ListingStore(mongo_db, cleanup=cleanup)


async def search(store, **params):
    query = translate(params)
    docs, total = await store.find_page(query.filter, query.sort, query.offset, query.limit)
    return docs, total


async def test_create_stores_cleaned_fields(store, make_user, mongo_db):
    owner = await make_user()

    post_id = await store.create(str(owner["_id"]), owner["email"], {
        "price": "12000",
        "state": " Karnataka ",
        "city": "Bengaluru",
        "location": "Indiranagar",
        "prefs": ["Vegetarian", " ", "Pets"],
    }, ["https://res.cloudinary.com/demo/a.jpg"])

    doc = await mongo_db.listings.find_one({"_id": ObjectId(post_id)})
    assert doc["user_id"] == owner["_id"]
    assert doc["state"] == "Karnataka"
    assert doc["price"] == 12000
    assert doc["prefs"] == ["Vegetarian", "Pets"]
    assert doc["images"] == ["https://res.cloudinary.com/demo/a.jpg"]
    assert doc["created_at"] == doc["updated_at"]


async def test_create_requires_location_fields(store, make_user):
    owner = await make_user()

    with pytest.raises(ValidationError) as exc_info:
        await store.create(str(owner["_id"]), owner["email"], {"state": "Goa", "city": " "})

    assert {e["field"] for e in exc_info.value.errors} == {"city", "location"}


async def test_create_rejects_too_many_images(store, make_user):
    owner = await make_user()

    with pytest.raises(ValidationError):
        await store.create(str(owner["_id"]), owner["email"],
                           {"state": "Goa", "city": "Panaji", "location": "Miramar"},
                           ["a", "b", "c", "d"])


async def test_create_without_owner_is_unauthenticated(store):
    with pytest.raises(Unauthenticated):
        await store.create("", None, {"state": "Goa", "city": "Panaji", "location": "Miramar"})


async def test_search_matches_substring_case_insensitively(store, make_user, make_listing):
    owner = await make_user()
    await make_listing(owner, state="Karnataka", city="Bengaluru")
    await make_listing(owner, state="Karnataka", city="Mysuru")
    await make_listing(owner, state="Kerala", city="Kochi")

    docs, total = await search(store, state="karna")

    assert total == 2
    assert {d["city"] for d in docs} == {"Bengaluru", "Mysuru"}


async def test_search_price_and_exact_fields(store, make_user, make_listing):
    owner = await make_user()
    await make_listing(owner, price=6000, furnishing="Furnished")
    await make_listing(owner, price=9000, furnishing="Unfurnished")
    await make_listing(owner, price=20000, furnishing="Furnished")

    docs, total = await search(store, minPrice="5000", maxPrice="10000", furnishing="Furnished")

    assert total == 1
    assert docs[0]["price"] == 6000


async def test_search_any_preference(store, make_user, make_listing):
    owner = await make_user()
    await make_listing(owner, prefs=["Vegetarian"])
    await make_listing(owner, prefs=["Pets allowed", "Non-smoker"])
    await make_listing(owner, prefs=["Night owl"])

    _, total = await search(store, preferences=["vegetarian", "pets"])

    assert total == 2


async def test_search_regex_metacharacters_are_literal(store, make_user, make_listing):
    owner = await make_user()
    await make_listing(owner, location="HSR Layout")

    _, total = await search(store, location=".*")

    assert total == 0


async def test_price_low_orders_ties_newest_first(store, make_user, make_listing):
    owner = await make_user()
    old_cheap = await make_listing(owner, price=5000)
    expensive = await make_listing(owner, price=15000)
    new_cheap = await make_listing(owner, price=5000)

    docs, _ = await search(store, sortBy="price-low")

    assert [d["_id"] for d in docs] == [new_cheap["_id"], old_cheap["_id"], expensive["_id"]]


async def test_pages_do_not_overlap(store, make_user, make_listing):
    owner = await make_user()
    for i in range(8):
        await make_listing(owner, price=1000 * i)

    first, total = await search(store, page="1")
    second, _ = await search(store, page="2")

    assert total == 8
    assert len(first) == 6
    assert len(second) == 2
    assert not {d["_id"] for d in first} & {d["_id"] for d in second}


async def test_find_by_owner_newest_first(store, make_user, make_listing):
    owner = await make_user()
    other = await make_user()
    older = await make_listing(owner)
    await make_listing(other)
    newer = await make_listing(owner)

    docs = await store.find_by_owner(str(owner["_id"]))

    assert [d["_id"] for d in docs] == [newer["_id"], older["_id"]]


async def test_update_owned(store, make_user, make_listing):
    owner = await make_user()
    listing = await make_listing(owner, price=8000)

    updated = await store.update_owned(str(listing["_id"]), str(owner["_id"]),
                                       {"price": 9500, "notes": " Near metro "})

    assert updated["price"] == 9500
    assert updated["notes"] == "Near metro"
    assert updated["state"] == listing["state"]


async def test_update_by_other_user_changes_nothing(store, make_user, make_listing, mongo_db):
    owner = await make_user()
    intruder = await make_user()
    listing = await make_listing(owner, price=8000)

    assert await store.update_owned(str(listing["_id"]), str(intruder["_id"]), {"price": 1}) is None
    assert (await mongo_db.listings.find_one({"_id": listing["_id"]}))["price"] == 8000


async def test_update_rejects_blank_required_field(store, make_user, make_listing):
    owner = await make_user()
    listing = await make_listing(owner)

    with pytest.raises(ValidationError):
        await store.update_owned(str(listing["_id"]), str(owner["_id"]), {"city": "  "})


async def test_delete_owned_removes_listing_saves_and_schedules_cleanup(store, cleanup, make_user,
                                                                        make_listing, mongo_db):
    owner = await make_user()
    fan = await make_user()
    images = ["https://res.cloudinary.com/demo/image/upload/v1/flatmate-finder-uploads/x.jpg"]
    listing = await make_listing(owner, images=images)
    await mongo_db.saved_posts.insert_one({"user_id": fan["_id"], "post_id": listing["_id"]})

    assert await store.delete_owned(str(listing["_id"]), str(owner["_id"])) is True

    assert await mongo_db.listings.find_one({"_id": listing["_id"]}) is None
    assert await mongo_db.saved_posts.count_documents({"post_id": listing["_id"]}) == 0
    cleanup.assert_called_once_with(str(listing["_id"]), images)


async def test_delete_by_other_user_returns_false(store, cleanup, make_user, make_listing, mongo_db):
    owner = await make_user()
    intruder = await make_user()
    listing = await make_listing(owner)

    assert await store.delete_owned(str(listing["_id"]), str(intruder["_id"])) is False
    assert await store.delete_owned(str(ObjectId()), str(owner["_id"])) is False
    assert await store.delete_owned("not-an-id", str(owner["_id"])) is False

    assert await mongo_db.listings.find_one({"_id": listing["_id"]}) is not None
    cleanup.assert_not_called()


async def test_image_cleanup_continues_past_failures():
    urls = ["https://res.cloudinary.com/demo/a.jpg", "https://res.cloudinary.com/demo/b.jpg",
            "https://res.cloudinary.com/demo/c.jpg"]
    fake_delete = AsyncMock(side_effect=[None, ExternalServiceError("boom"), None])

    with patch("app.tasks.image_cleanup.delete_image_from_cloudinary", fake_delete):
        deleted = await delete_listing_images("abc", urls)

    assert deleted == 2
    assert fake_delete.await_count == 3


async def test_stats(store, make_user, make_listing):
    owner = await make_user()
    await make_listing(owner, state="Karnataka", price=10000, furnishing="Furnished", prefs=["Pets"])
    await make_listing(owner, state="Karnataka", price=20000, furnishing="Furnished", prefs=["Pets", "Veg"])
    await make_listing(owner, state="Goa", price=15001, furnishing="Unfurnished", prefs=[])

    stats = await store.stats()

    assert stats.total_listings == 3
    assert stats.average_price == 15000
    assert (stats.top_states[0].value, stats.top_states[0].count) == ("Karnataka", 2)
    assert (stats.top_preferences[0].value, stats.top_preferences[0].count) == ("Pets", 2)
    assert {(b.value, b.count) for b in stats.furnishing_distribution} == {("Furnished", 2), ("Unfurnished", 1)}


async def test_stats_on_empty_collection(store):
    stats = await store.stats()

    assert stats.total_listings == 0
    assert stats.average_price == 0
    assert stats.top_states == []


async def test_listing_deleted_even_when_image_removal_fails(make_user, make_listing, mongo_db):
    owner = await make_user()
    images = ["https://res.cloudinary.com/demo/image/upload/v1/flatmate-finder-uploads/a.jpg",
              "https://res.cloudinary.com/demo/image/upload/v1/flatmate-finder-uploads/b.jpg"]
    listing = await make_listing(owner, images=images)
    failing_delete = AsyncMock(side_effect=ExternalServiceError("storage down"))

    with patch("app.tasks.image_cleanup.delete_image_from_cloudinary", failing_delete):
        assert await ListingStore(mongo_db).delete_owned(str(listing["_id"]), str(owner["_id"])) is True
        await wait_for_pending_cleanups()

    assert await mongo_db.listings.find_one({"_id": listing["_id"]}) is None
    assert failing_delete.await_count == 2


@pytest.mark.parametrize("price", ["nan", "inf", "-inf", float("nan")])
async def test_non_finite_price_is_rejected(store, make_user, mongo_db, price):
    owner = await make_user()

    with pytest.raises(ValidationError) as exc_info:
        await store.create(str(owner["_id"]), owner["email"],
                           {"state": "Goa", "city": "Panaji", "location": "Miramar", "price": price})

    assert exc_info.value.errors[0]["field"] == "price"
    assert await mongo_db.listings.count_documents({}) == 0


async def test_update_rejects_non_finite_price(store, make_user, make_listing, mongo_db):
    owner = await make_user()
    listing = await make_listing(owner, price=8000)

    with pytest.raises(ValidationError):
        await store.update_owned(str(listing["_id"]), str(owner["_id"]), {"price": "inf"})

    assert (await mongo_db.listings.find_one({"_id": listing["_id"]}))["price"] == 8000
