import pytest


@pytest.fixture
def fake_uploads(monkeypatch):
    uploaded = []

    def _upload_image(file, folder):
        uploaded.append(folder)
        return {"url": f"https://res.cloudinary.com/demo/image/upload/v1/{folder}/img{len(uploaded)}.jpg",
                "public_id": f"{folder}/img{len(uploaded)}"}

    deleted = []
    monkeypatch.setattr("routes.products.upload_image", _upload_image)
    monkeypatch.setattr("routes.products.delete_images", lambda ids: deleted.extend(ids))
    return uploaded, deleted


PRODUCT_FORM = {
    "title": "Wedding Invitation",
    "description": "Animated wedding invitation website",
    "price": "99000",
    "category": "Wedding",
    "benefit1": "Animated",
    "benefit2": "Mobile friendly",
    "benefit3": "Easy to edit",
    "youtube_url": "https://youtu.be/dQw4w9WgXcQ",
    "google_drive_url": "https://drive.google.com/file/d/Drive123/view",
}


async def test_admin_creates_product(client, make_user, fake_uploads):
    admin = await make_user(email="admin@example.com", username="admin", role="admin")

    res = await client.post(
        "/api/products",
        data=PRODUCT_FORM,
        files=[("images", ("cover.jpg", b"\xff\xd8fake", "image/jpeg"))],
        headers=admin["headers"],
    )

    assert res.status_code == 201
    product = res.json()["product"]
    assert product["category"] == "wedding"
    assert product["preview_video"]["video_id"] == "dQw4w9WgXcQ"
    assert product["source_code"]["google_drive_file_id"] == "Drive123"
    assert len(product["images"]) == 1


async def test_create_rejects_three_images(client, make_user, fake_uploads):
    admin = await make_user(email="admin@example.com", username="admin", role="admin")
    files = [("images", (f"{i}.jpg", b"img", "image/jpeg")) for i in range(3)]

    res = await client.post("/api/products", data=PRODUCT_FORM, files=files, headers=admin["headers"])
    assert res.status_code == 400


async def test_create_requires_admin(client, make_user, fake_uploads):
    user = await make_user()

    res = await client.post(
        "/api/products",
        data=PRODUCT_FORM,
        files=[("images", ("cover.jpg", b"img", "image/jpeg"))],
        headers=user["headers"],
    )
    assert res.status_code == 403


async def test_listing_filters_and_hides_source(client, make_product):
    await make_product(title="Portfolio Dark", price=50000.0)
    await make_product(
        title="Company Profile",
        description="Corporate company profile site",
        category="company",
        price=250000.0,
    )
    await make_product(title="Hidden", is_active=False)

    res = await client.get("/api/products", params={"search": "portfolio"})
    titles = [p["title"] for p in res.json()["products"]]
    assert titles == ["Portfolio Dark"]
    assert "source_code" not in res.json()["products"][0]

    res = await client.get("/api/products", params={"min_price": 100000})
    assert [p["title"] for p in res.json()["products"]] == ["Company Profile"]


async def test_get_product_errors(client, make_product):
    product = await make_product(is_active=False)

    assert (await client.get("/api/products/nope")).status_code == 400
    assert (await client.get(f"/api/products/{product['_id']}")).status_code == 404


async def test_soft_then_hard_delete(client, db, make_user, make_product, fake_uploads):
    admin = await make_user(email="admin@example.com", username="admin", role="admin")
    product = await make_product(owner=admin)

    res = await client.delete(f"/api/products/{product['_id']}", headers=admin["headers"])
    assert res.status_code == 200
    assert (await db.products.find_one({"_id": product["_id"]}))["is_active"] is False

    res = await client.delete(f"/api/products/{product['_id']}/hard", headers=admin["headers"])
    assert res.status_code == 200
    assert await db.products.count_documents({}) == 0
    assert fake_uploads[1] == ["a"]


async def test_admin_stats(client, make_user, make_product):
    admin = await make_user(email="admin@example.com", username="admin", role="admin")
    await make_product(price=100.0)
    await make_product(price=300.0, is_active=False)

    res = await client.get("/api/products/admin/stats", headers=admin["headers"])

    body = res.json()
    assert body["total_products"] == 2
    assert body["inactive_products"] == 1
    assert body["average_price"] == 200.0
