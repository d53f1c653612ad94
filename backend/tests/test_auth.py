from conftest import PASSWORD


async def test_register_rejects_weak_password(client):
    res = await client.post("/api/auth/register", json={
        "username": "newbie",
        "email": "newbie@example.com",
        "password": "alllowercase",
    })

    assert res.status_code == 400
    assert res.json()["success"] is False


async def test_register_returns_token_and_user_role(client):
    res = await client.post("/api/auth/register", json={
        "username": "newbie",
        "email": "Newbie@Example.com",
        "password": "Str0ngPass",
    })

    assert res.status_code == 201
    body = res.json()
    assert body["token"]
    assert body["user"]["email"] == "newbie@example.com"
    assert body["user"]["role"] == "user"

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.status_code == 200
    assert me.json()["user"]["username"] == "newbie"


async def test_register_duplicate_email(client, make_user):
    await make_user(email="taken@example.com", username="taken")

    res = await client.post("/api/auth/register", json={
        "username": "other",
        "email": "taken@example.com",
        "password": "Str0ngPass",
    })
    assert res.status_code == 400


async def test_login_rejects_bad_password(client, make_user):
    await make_user(email="buyer@example.com")

    res = await client.post("/api/auth/login", json={"email": "buyer@example.com", "password": "Wrong123"})
    assert res.status_code == 401


async def test_login_updates_last_login(client, db, make_user):
    user = await make_user(email="buyer@example.com")

    res = await client.post("/api/auth/login", json={"email": "buyer@example.com", "password": PASSWORD})
    assert res.status_code == 200
    assert res.json()["user"]["role"] == "user"

    stored = await db.users.find_one({"_id": user["_id"]})
    assert stored["last_login"] is not None


async def test_me_requires_token(client):
    res = await client.get("/api/auth/me")
    assert res.status_code == 401


async def test_admin_routes_reject_regular_user(client, make_user):
    user = await make_user()

    res = await client.get("/api/auth/admin/users", headers=user["headers"])
    assert res.status_code == 403


async def test_change_password_checks_current(client, make_user):
    user = await make_user()

    res = await client.put(
        "/api/auth/change-password",
        json={"current_password": "Nope1234", "new_password": "Another123"},
        headers=user["headers"],
    )
    assert res.status_code == 400


async def test_forgot_password_clears_token_when_email_fails(client, db, make_user, monkeypatch):
    from utils import email_service

    async def broken(*args, **kwargs):
        raise RuntimeError("smtp down")

    monkeypatch.setattr(email_service, "send_reset_password", broken)
    user = await make_user(email="buyer@example.com")

    res = await client.post("/api/auth/forgot-password", json={"email": "buyer@example.com"})
    assert res.status_code == 500

    stored = await db.users.find_one({"_id": user["_id"]})
    assert "reset_password_token" not in stored


async def test_reset_password_with_valid_token(client, db, make_user, monkeypatch):
    from utils import email_service

    sent = {}

    async def capture(to, username, reset_url, minutes):
        sent["url"] = reset_url

    monkeypatch.setattr(email_service, "send_reset_password", capture)
    await make_user(email="buyer@example.com")

    res = await client.post("/api/auth/forgot-password", json={"email": "buyer@example.com"})
    assert res.status_code == 200

    token = sent["url"].rsplit("/", 1)[-1]
    res = await client.put(
        f"/api/auth/reset-password/{token}",
        json={"password": "Brand5New", "confirm_password": "Brand5New"},
    )
    assert res.status_code == 200

    login = await client.post("/api/auth/login", json={"email": "buyer@example.com", "password": "Brand5New"})
    assert login.status_code == 200


async def test_register_rejects_password_over_bcrypt_limit(client):
    res = await client.post(
        "/api/auth/register",
        json={"username": "longpass", "email": "long@example.com", "password": "Aa1" + "x" * 80},
    )

    assert res.status_code == 400
    assert "at most 72 bytes" in res.json()["message"]


async def test_reset_password_rejects_password_over_bcrypt_limit(client, db, make_user, monkeypatch):
    from utils import email_service

    sent = {}

    async def capture(to, username, reset_url, minutes):
        sent["url"] = reset_url

    monkeypatch.setattr(email_service, "send_reset_password", capture)
    user = await make_user(email="buyer@example.com")
    await client.post("/api/auth/forgot-password", json={"email": "buyer@example.com"})

    token = sent["url"].rsplit("/", 1)[-1]
    long_password = "Aa1" + "x" * 80
    res = await client.put(
        f"/api/auth/reset-password/{token}",
        json={"password": long_password, "confirm_password": long_password},
    )

    assert res.status_code == 400
    stored = await db.users.find_one({"_id": user["_id"]})
    assert stored["password"] == user["password"]
