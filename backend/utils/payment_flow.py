import logging
from datetime import datetime

from config.env import CLIENT_URL
from utils import email_queue
from utils.payouts import create_payout_for_payment
from utils.products import source_download_url

logger = logging.getLogger(__name__)


async def _queue_delivery_email(db, *, order: dict, payment: dict, payout: dict):
    email = (payout.get("customer_info") or {}).get("email")
    if not email:
        logger.warning("DELIVERY_EMAIL_SKIPPED no recipient order_id=%s", order["_id"])
        return

    product = await db.products.find_one({"_id": order.get("product_id")})
    download_url = source_download_url(product)

    email_queue.enqueue(
        "payment_success",
        to=email,
        username=(payout.get("customer_info") or {}).get("name") or "Customer",
        transaction_id=payment["transaction_id"],
        amount=payment.get("amount"),
    )
    email_queue.enqueue(
        "purchase_delivery",
        to=email,
        customer_name=(payout.get("customer_info") or {}).get("name") or "Customer",
        order_number=order.get("order_number") or payment["transaction_id"],
        product_name=(product or {}).get("title") or "Digital product",
        total_amount=payment.get("amount"),
        download_url=download_url or f"{CLIENT_URL}/order/{order['_id']}",
        source_code_available=bool(download_url),
    )


async def apply_payment_update(
    db,
    *,
    payment: dict,
    payment_status: str,
    order_status: str | None = None,
    gateway_response: dict | None = None,
    payment_type: str | None = None,
) -> dict:
    """
    Write a payment transition and carry it over to the order.

    order_status None leaves the order alone. When the payment lands on
    completed, the purchase record is created once per transaction and
    the receipt and delivery emails are queued with it.
    """
    now = datetime.utcnow()
    update = {"payment_status": payment_status, "updated_at": now}
    if gateway_response is not None:
        update["gateway_response"] = gateway_response
        if gateway_response.get("transaction_id"):
            update["gateway_transaction_id"] = gateway_response["transaction_id"]
    if payment_status == "completed":
        update["payment_date"] = now

    await db.payments.update_one({"_id": payment["_id"]}, {"$set": update})
    payment = {**payment, **update}

    order = await db.orders.find_one({"_id": payment["order_id"]})
    if not order:
        logger.warning("PAYMENT_ORDER_MISSING transaction_id=%s", payment["transaction_id"])
        return payment

    if order_status and order.get("status") != order_status:
        await db.orders.update_one(
            {"_id": order["_id"]},
            {"$set": {"status": order_status, "updated_at": now}},
        )
        order["status"] = order_status

    if payment_status == "completed":
        payout = await create_payout_for_payment(
            db, payment=payment, order=order, payment_method=payment_type
        )
        if payout:
            await _queue_delivery_email(db, order=order, payment=payment, payout=payout)

    logger.info(
        "PAYMENT_UPDATED transaction_id=%s payment_status=%s order_status=%s",
        payment["transaction_id"], payment_status, order.get("status"),
    )
    return payment
