import asyncio
import logging
from datetime import datetime, timedelta

from config.env import PAYMENT_TIMEOUT_MINUTES, PAYMENT_SWEEP_INTERVAL_SECONDS
from database import get_db
from utils import email_queue

logger = logging.getLogger(__name__)

PAYMENT_EXPIRED_REASON = f"Payment timeout - exceeded {PAYMENT_TIMEOUT_MINUTES} minutes limit"
ORDER_EXPIRED_REASON = f"Payment expired - no payment received within {PAYMENT_TIMEOUT_MINUTES} minutes"


async def _recipient(db, payment: dict, order: dict | None) -> tuple[str | None, str]:
    user_id = payment.get("user_id") or (order or {}).get("user_id")
    if user_id:
        user = await db.users.find_one({"_id": user_id})
        if user and user.get("email"):
            return user["email"], user.get("username") or "Customer"

    email = payment.get("customer_email") or (order or {}).get("guest_email")
    return email, "Customer"


async def check_expired_payments(db) -> dict:
    """
    Expire payments left pending past the timeout and fail their orders.

    Safe to call repeatedly: each payment is only flipped while it is
    still pending, so a second run finds nothing to do.
    """
    now = datetime.utcnow()
    cutoff = now - timedelta(minutes=PAYMENT_TIMEOUT_MINUTES)

    cursor = db.payments.find({
        "payment_status": "pending",
        "created_at": {"$lt": cutoff},
    })

    updated = []
    emails_queued = 0

    async for payment in cursor:
        try:
            result = await db.payments.update_one(
                {"_id": payment["_id"], "payment_status": "pending"},
                {"$set": {
                    "payment_status": "expired",
                    "failure_reason": PAYMENT_EXPIRED_REASON,
                    "updated_at": now,
                }},
            )
            if result.modified_count == 0:
                # Settled or expired by someone else in the meantime
                continue

            order = None
            if payment.get("order_id"):
                order = await db.orders.find_one({"_id": payment["order_id"]})
            if order:
                await db.orders.update_one(
                    {"_id": order["_id"]},
                    {"$set": {
                        "status": "failed",
                        "failure_reason": ORDER_EXPIRED_REASON,
                        "updated_at": now,
                    }},
                )

            updated.append(payment["transaction_id"])
            logger.info("PAYMENT_EXPIRED transaction_id=%s", payment["transaction_id"])

            email, name = await _recipient(db, payment, order)
            if not email:
                logger.warning("PAYMENT_EXPIRED_NO_EMAIL transaction_id=%s", payment["transaction_id"])
                continue

            try:
                email_queue.enqueue(
                    "payment_expired",
                    to=email,
                    username=name,
                    transaction_id=payment["transaction_id"],
                    order_id=str(order["_id"]) if order else None,
                    amount=payment.get("amount"),
                )
                emails_queued += 1
            except Exception:
                logger.exception("PAYMENT_EXPIRED_EMAIL_ERROR transaction_id=%s", payment["transaction_id"])

        except Exception:
            logger.exception("PAYMENT_EXPIRY_ERROR payment_id=%s", payment.get("_id"))

    if updated:
        logger.info("Expired %s pending payment(s)", len(updated))

    return {
        "expired_count": len(updated),
        "updated_payments": updated,
        "emails_queued": emails_queued,
    }


async def payment_expiry_worker():
    db = get_db()
    logger.info("Payment expiry sweep started - every %ss", PAYMENT_SWEEP_INTERVAL_SECONDS)

    while True:
        try:
            await check_expired_payments(db)
        except Exception:
            logger.exception("PAYMENT_EXPIRY_SWEEP_ERROR")

        await asyncio.sleep(PAYMENT_SWEEP_INTERVAL_SECONDS)
