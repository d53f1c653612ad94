async def _post_review(client, user, product, order, rating=5):
    return await client.post(
        "/api/reviews",
        json={
            "product_id": str(product["_id"]),
            "order_id": str(order["_id"]),
            "rating": rating,
            "comment": "Great template",
        },
        headers=user["headers"],
    )


async def test_duplicate_review_is_rejected(client, make_user, make_product, make_order):
    user = await make_user()
    product = await make_product()
    order = await make_order(product, user, status="confirmed")

    first = await _post_review(client, user, product, order)
    second = await _post_review(client, user, product, order, rating=4)

    assert first.status_code == 201
    assert first.json()["review"]["is_verified_purchase"] is True
    assert second.status_code == 400


async def test_unconfirmed_order_cannot_be_reviewed(client, make_user, make_product, make_order):
    user = await make_user()
    product = await make_product()
    order = await make_order(product, user, status="pending")

    res = await _post_review(client, user, product, order)
    assert res.status_code == 400

    check = await client.get(
        f"/api/reviews/can-review/{product['_id']}/{order['_id']}",
        headers=user["headers"],
    )
    assert check.json()["can_review"] is False
    assert check.json()["reason"]


async def test_other_users_order_cannot_be_reviewed(client, make_user, make_product, make_order):
    owner = await make_user()
    other = await make_user(email="other@example.com", username="other")
    product = await make_product()
    order = await make_order(product, owner, status="confirmed")

    res = await _post_review(client, other, product, order)
    assert res.status_code == 403


async def test_rating_out_of_range(client, make_user, make_product, make_order):
    user = await make_user()
    product = await make_product()
    order = await make_order(product, user, status="confirmed")

    res = await _post_review(client, user, product, order, rating=6)
    assert res.status_code == 400


async def test_product_reviews_average(client, make_user, make_product, make_order):
    product = await make_product()
    for i, rating in enumerate([5, 4]):
        user = await make_user(email=f"u{i}@example.com", username=f"user{i}")
        order = await make_order(product, user, status="confirmed")
        await _post_review(client, user, product, order, rating=rating)

    res = await client.get(f"/api/reviews/product/{product['_id']}")

    body = res.json()
    assert body["total_reviews"] == 2
    assert body["average_rating"] == 4.5

    listing = await client.get("/api/products")
    assert listing.json()["products"][0]["rating"] == 4.5
    assert listing.json()["products"][0]["total_reviews"] == 2


async def test_helpful_toggle(client, make_user, make_product, make_order):
    author = await make_user()
    reader = await make_user(email="reader@example.com", username="reader")
    product = await make_product()
    order = await make_order(product, author, status="confirmed")
    review_id = (await _post_review(client, author, product, order)).json()["review"]["id"]

    on = await client.post(f"/api/reviews/{review_id}/helpful", headers=reader["headers"])
    off = await client.post(f"/api/reviews/{review_id}/helpful", headers=reader["headers"])

    assert on.json() == {"helpful": True, "helpful_count": 1}
    assert off.json() == {"helpful": False, "helpful_count": 0}
