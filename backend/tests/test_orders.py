async def test_quantity_zero_is_rejected(client, db, make_user, make_product):
    user = await make_user()
    product = await make_product()

    res = await client.post(
        "/api/orders",
        json={"product_id": str(product["_id"]), "quantity": 0},
        headers=user["headers"],
    )

    assert res.status_code == 400
    assert await db.orders.count_documents({}) == 0


async def test_create_order_prices_from_product_and_clears_cart_row(client, db, make_user, make_product):
    user = await make_user()
    product = await make_product(price=125000.5)
    await client.post(
        "/api/cart",
        json={"product_id": str(product["_id"]), "quantity": 1},
        headers=user["headers"],
    )

    res = await client.post(
        "/api/orders",
        json={"product_id": str(product["_id"]), "quantity": 3},
        headers=user["headers"],
    )

    assert res.status_code == 201
    order = res.json()["order"]
    assert order["status"] == "pending"
    assert order["total_amount"] == 375001.5
    assert order["order_number"].startswith("ORD-")
    assert order["items"][0]["quantity"] == 3
    assert await db.carts.count_documents({"user_id": user["_id"]}) == 0


async def test_orders_from_empty_cart(client, make_user):
    user = await make_user()

    res = await client.post("/api/orders/from-cart", json={}, headers=user["headers"])
    assert res.status_code == 400


async def test_instant_order_for_guest(client, db, make_product):
    product = await make_product()

    res = await client.post("/api/orders/instant", json={
        "product_id": str(product["_id"]),
        "email": "guest@example.com",
    })

    assert res.status_code == 201
    assert res.json()["is_guest"] is True
    stored = await db.orders.find_one({})
    assert stored["guest_email"] == "guest@example.com"
    assert stored["user_id"] is None


async def test_instant_order_rejects_inactive_product(client, make_product):
    product = await make_product(is_active=False)

    res = await client.post("/api/orders/instant", json={
        "product_id": str(product["_id"]),
        "email": "guest@example.com",
    })
    assert res.status_code == 400


async def test_user_can_only_cancel(client, make_user, make_product, make_order):
    user = await make_user()
    order = await make_order(await make_product(), user)

    res = await client.put(
        f"/api/orders/{order['_id']}/status",
        json={"status": "shipped"},
        headers=user["headers"],
    )
    assert res.status_code == 403

    res = await client.put(
        f"/api/orders/{order['_id']}/status",
        json={"status": "cancelled"},
        headers=user["headers"],
    )
    assert res.status_code == 200
    assert res.json()["order"]["status"] == "cancelled"


async def test_other_user_cannot_read_order(client, make_user, make_product, make_order):
    owner = await make_user()
    other = await make_user(email="other@example.com", username="other")
    order = await make_order(await make_product(), owner)

    res = await client.get(f"/api/orders/{order['_id']}", headers=other["headers"])
    assert res.status_code == 403


async def test_download_url_requires_paid_order(client, make_user, make_product, make_order):
    user = await make_user()
    product = await make_product()
    pending = await make_order(product, user)
    confirmed = await make_order(product, user, status="confirmed")

    res = await client.get(f"/api/orders/{pending['_id']}/download-url", headers=user["headers"])
    assert res.status_code == 403

    res = await client.get(f"/api/orders/{confirmed['_id']}/download-url", headers=user["headers"])
    assert res.status_code == 200
    assert res.json()["download_url"] == "https://drive.google.com/uc?export=download&id=abc123"
