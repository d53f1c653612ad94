from datetime import datetime, timedelta

from utils.payouts import create_payout_for_payment


async def _purchase(db, make_user, make_product, make_order, make_payment):
    user = await make_user()
    order = await make_order(await make_product(), user, status="confirmed")
    payment = await make_payment(order, status="completed")
    payout = await create_payout_for_payment(db, payment=payment, order=order)
    return user, payout


async def test_payout_is_created_once_per_transaction(db, make_user, make_product, make_order, make_payment):
    user = await make_user()
    order = await make_order(await make_product(), user, status="confirmed")
    payment = await make_payment(order, status="completed")

    first = await create_payout_for_payment(db, payment=payment, order=order)
    second = await create_payout_for_payment(db, payment=payment, order=order)

    assert first is not None
    assert second is None
    assert first["status"] == "completed"
    assert first["product_details"]["title"] == "Portfolio Template"
    assert first["download_links"][0]["expires_at"] > datetime.utcnow() + timedelta(days=29)


async def test_download_counts_and_expiry(client, db, make_user, make_product, make_order, make_payment):
    user, payout = await _purchase(db, make_user, make_product, make_order, make_payment)
    url = f"/api/payouts/{payout['transaction_id']}/download"

    res = await client.get(url, headers=user["headers"])
    assert res.status_code == 200
    assert res.json()["download_links"][0]["download_count"] == 1

    await db.payouts.update_one(
        {"_id": payout["_id"]},
        {"$set": {"download_links": [{
            **payout["download_links"][0],
            "expires_at": datetime.utcnow() - timedelta(days=1),
        }]}},
    )
    res = await client.get(url, headers=user["headers"])
    assert res.status_code == 410


async def test_refund_window(client, db, make_user, make_product, make_order, make_payment):
    user, payout = await _purchase(db, make_user, make_product, make_order, make_payment)
    url = f"/api/payouts/{payout['transaction_id']}/refund"

    await db.payouts.update_one(
        {"_id": payout["_id"]},
        {"$set": {"purchase_date": datetime.utcnow() - timedelta(days=8)}},
    )
    res = await client.post(url, json={"reason": "Not what I expected"}, headers=user["headers"])
    assert res.status_code == 400

    await db.payouts.update_one(
        {"_id": payout["_id"]},
        {"$set": {"purchase_date": datetime.utcnow() - timedelta(days=2)}},
    )
    res = await client.post(url, json={"reason": "Not what I expected"}, headers=user["headers"])
    assert res.status_code == 200
    assert (await db.payouts.find_one({"_id": payout["_id"]}))["status"] == "refund_requested"


async def test_history_is_scoped_to_user(client, db, make_user, make_product, make_order, make_payment):
    user, payout = await _purchase(db, make_user, make_product, make_order, make_payment)
    stranger = await make_user(email="stranger@example.com", username="stranger")

    mine = await client.get("/api/payouts/history", headers=user["headers"])
    theirs = await client.get("/api/payouts/history", headers=stranger["headers"])

    assert mine.json()["pagination"]["total"] == 1
    assert theirs.json()["pagination"]["total"] == 0
    assert (await client.get(f"/api/payouts/{payout['transaction_id']}", headers=stranger["headers"])).status_code == 404
