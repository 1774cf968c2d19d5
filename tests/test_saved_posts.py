from bson import ObjectId

from conftest import auth_headers


async def test_save_twice_reports_already_saved(client, make_user, make_listing, mongo_db):
    owner = await make_user()
    fan = await make_user()
    listing = await make_listing(owner)
    url = f"/api/save-post/{listing['_id']}"

    first = await client.post(url, headers=auth_headers(fan))
    second = await client.post(url, headers=auth_headers(fan))

    assert first.json()["alreadySaved"] is False
    assert second.status_code == 200
    assert second.json()["alreadySaved"] is True
    assert await mongo_db.saved_posts.count_documents({"user_id": fan["_id"]}) == 1


async def test_save_unknown_post_is_404(client, make_user):
    fan = await make_user()

    response = await client.post(f"/api/save-post/{ObjectId()}", headers=auth_headers(fan))

    assert response.status_code == 404


async def test_check_and_unsave(client, make_user, make_listing):
    owner = await make_user()
    fan = await make_user()
    listing = await make_listing(owner)
    headers = auth_headers(fan)

    assert (await client.get(f"/api/check-saved/{listing['_id']}", headers=headers)).json()["isSaved"] is False
    await client.post(f"/api/save-post/{listing['_id']}", headers=headers)
    assert (await client.get(f"/api/check-saved/{listing['_id']}", headers=headers)).json()["isSaved"] is True

    response = await client.delete(f"/api/save-post/{listing['_id']}", headers=headers)

    assert response.status_code == 200
    assert (await client.get(f"/api/check-saved/{listing['_id']}", headers=headers)).json()["isSaved"] is False


async def test_saved_posts_newest_save_first_and_skip_deleted(client, make_user, make_listing):
    owner = await make_user(fullname="Owner")
    fan = await make_user()
    headers = auth_headers(fan)
    first = await make_listing(owner, city="Pune")
    second = await make_listing(owner, city="Mumbai")
    doomed = await make_listing(owner, city="Nagpur")

    for listing in (first, second, doomed):
        await client.post(f"/api/save-post/{listing['_id']}", headers=headers)
    await client.delete(f"/api/my-posts/{doomed['_id']}", headers=auth_headers(owner))

    response = await client.get("/api/saved-posts", headers=headers)

    data = response.json()["data"]
    assert {p["city"] for p in data} == {"Pune", "Mumbai"}
    assert all(p["owner"]["fullname"] == "Owner" for p in data)


async def test_saved_posts_require_login(client):
    response = await client.get("/api/saved-posts")

    assert response.status_code == 401
