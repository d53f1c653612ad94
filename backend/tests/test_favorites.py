async def test_toggle_adds_then_removes(client, db, make_user, make_product):
    user = await make_user()
    product = await make_product()
    url = f"/api/favorites/toggle/{product['_id']}"

    added = await client.post(url, headers=user["headers"])
    assert added.json()["is_favorite"] is True
    check = await client.get(f"/api/favorites/check/{product['_id']}", headers=user["headers"])
    assert check.json()["is_favorite"] is True

    removed = await client.post(url, headers=user["headers"])
    assert removed.json()["is_favorite"] is False
    assert await db.favorites.count_documents({"user_id": user["_id"]}) == 0


async def test_add_twice_and_remove_missing(client, make_user, make_product):
    user = await make_user()
    product = await make_product()

    first = await client.post(f"/api/favorites/{product['_id']}", headers=user["headers"])
    second = await client.post(f"/api/favorites/{product['_id']}", headers=user["headers"])
    assert first.status_code == 201
    assert second.status_code == 400

    assert (await client.delete(f"/api/favorites/{product['_id']}", headers=user["headers"])).status_code == 200
    assert (await client.delete(f"/api/favorites/{product['_id']}", headers=user["headers"])).status_code == 404


async def test_listing_hides_inactive_products(client, make_user, make_product):
    user = await make_user()
    live = await make_product(title="Live")
    gone = await make_product(title="Gone", is_active=False)
    for product in (live, gone):
        await client.post(f"/api/favorites/toggle/{product['_id']}", headers=user["headers"])

    res = await client.get("/api/favorites", headers=user["headers"])

    titles = [p["title"] for p in res.json()["favorites"]]
    assert titles == ["Live"]
