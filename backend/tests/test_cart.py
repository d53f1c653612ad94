from datetime import datetime

import pytest
from fastapi import HTTPException

from routes.cart import _increment_quantity


async def test_adding_same_product_increments_quantity(client, db, make_user, make_product):
    user = await make_user()
    product = await make_product()

    for _ in range(2):
        res = await client.post(
            "/api/cart",
            json={"product_id": str(product["_id"]), "quantity": 1},
            headers=user["headers"],
        )
        assert res.status_code == 201

    rows = await db.carts.find({"user_id": user["_id"]}).to_list(length=None)
    assert len(rows) == 1
    assert rows[0]["quantity"] == 2

    cart = await client.get("/api/cart", headers=user["headers"])
    summary = cart.json()["summary"]
    assert summary["total_items"] == 1
    assert summary["total_quantity"] == 2
    assert summary["total_price"] == 300000.0


async def test_add_rejects_quantity_over_limit(client, make_user, make_product):
    user = await make_user()
    product = await make_product()

    res = await client.post(
        "/api/cart",
        json={"product_id": str(product["_id"]), "quantity": 999},
        headers=user["headers"],
    )
    assert res.status_code == 201

    res = await client.post(
        "/api/cart",
        json={"product_id": str(product["_id"]), "quantity": 1},
        headers=user["headers"],
    )
    assert res.status_code == 400


async def test_add_unknown_product(client, make_user):
    user = await make_user()

    res = await client.post(
        "/api/cart",
        json={"product_id": "64b7f0c2a1b2c3d4e5f60718", "quantity": 1},
        headers=user["headers"],
    )
    assert res.status_code == 404


async def test_remove_missing_row(client, make_user, make_product):
    user = await make_user()
    product = await make_product()

    res = await client.delete(f"/api/cart/{product['_id']}", headers=user["headers"])
    assert res.status_code == 404


async def test_bad_object_id_is_400(client, make_user):
    user = await make_user()

    res = await client.put("/api/cart/not-an-id", json={"quantity": 2}, headers=user["headers"])
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid product id format"


async def test_increment_respects_ceiling_when_row_already_exists(db, make_user, make_product):
    user = await make_user()
    product = await make_product()
    key = {"user_id": user["_id"], "product_id": product["_id"]}
    now = datetime.utcnow()
    await db.carts.insert_one({**key, "quantity": 998, "added_at": now, "updated_at": now})

    with pytest.raises(HTTPException) as exc:
        await _increment_quantity(db, key, 5, now)
    assert exc.value.status_code == 400
    assert (await db.carts.find_one(key))["quantity"] == 998

    assert await _increment_quantity(db, key, 1, now) == 999
