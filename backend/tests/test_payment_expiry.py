from datetime import datetime, timedelta

from utils import email_queue
from workers.payment_expiry_worker import check_expired_payments


async def test_stale_pending_payment_expires_and_order_fails(db, make_user, make_product, make_order, make_payment):
    user = await make_user()
    order = await make_order(await make_product(), user)
    payment = await make_payment(order, created_at=datetime.utcnow() - timedelta(minutes=11))

    summary = await check_expired_payments(db)

    assert summary["expired_count"] == 1
    assert summary["updated_payments"] == [payment["transaction_id"]]
    assert summary["emails_queued"] == 1

    stored_payment = await db.payments.find_one({"_id": payment["_id"]})
    stored_order = await db.orders.find_one({"_id": order["_id"]})
    assert stored_payment["payment_status"] == "expired"
    assert stored_payment["failure_reason"]
    assert stored_order["status"] == "failed"
    assert stored_order["failure_reason"]

    job = email_queue.get_queue().get_nowait()
    assert job["kind"] == "payment_expired"
    assert job["payload"]["to"] == user["email"]


async def test_sweep_is_idempotent(db, make_user, make_product, make_order, make_payment):
    order = await make_order(await make_product(), await make_user())
    await make_payment(order, created_at=datetime.utcnow() - timedelta(minutes=30))

    first = await check_expired_payments(db)
    second = await check_expired_payments(db)

    assert first["expired_count"] == 1
    assert second["expired_count"] == 0
    assert second["emails_queued"] == 0


async def test_recent_and_settled_payments_are_left_alone(db, make_user, make_product, make_order, make_payment):
    product = await make_product()
    user = await make_user()
    recent = await make_payment(
        await make_order(product, user),
        transaction_id="TXN-1-RECENT",
        created_at=datetime.utcnow() - timedelta(minutes=5),
    )
    settled = await make_payment(
        await make_order(product, user, status="confirmed"),
        transaction_id="TXN-2-SETTLED",
        status="completed",
        created_at=datetime.utcnow() - timedelta(hours=2),
    )

    summary = await check_expired_payments(db)

    assert summary["expired_count"] == 0
    assert (await db.payments.find_one({"_id": recent["_id"]}))["payment_status"] == "pending"
    assert (await db.payments.find_one({"_id": settled["_id"]}))["payment_status"] == "completed"


async def test_guest_payment_uses_customer_email(db, make_product, make_order, make_payment):
    order = await make_order(await make_product(), guest_email="guest@example.com")
    await make_payment(order, created_at=datetime.utcnow() - timedelta(minutes=15))

    summary = await check_expired_payments(db)

    assert summary["emails_queued"] == 1
    assert email_queue.get_queue().get_nowait()["payload"]["to"] == "guest@example.com"


async def test_check_expired_endpoint(client, make_user, make_product, make_order, make_payment):
    order = await make_order(await make_product(), await make_user())
    await make_payment(order, created_at=datetime.utcnow() - timedelta(minutes=11))

    res = await client.post("/api/payments/check-expired")

    assert res.status_code == 200
    assert res.json()["expired_count"] == 1
