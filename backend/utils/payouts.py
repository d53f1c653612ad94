import logging
from datetime import datetime, timedelta

from pymongo.errors import DuplicateKeyError

from config.constants import DOWNLOAD_LINK_DAYS
from utils.products import source_download_url

logger = logging.getLogger(__name__)


def build_download_links(product: dict | None) -> list[dict]:
    url = source_download_url(product)
    if not url:
        return []

    source = product.get("source_code") or {}
    return [{
        "file_name": source.get("original_name") or source.get("file_name") or "source-code.zip",
        "file_url": url,
        "download_count": 0,
        "expires_at": datetime.utcnow() + timedelta(days=DOWNLOAD_LINK_DAYS),
    }]


async def create_payout_for_payment(
    db,
    *,
    payment: dict,
    order: dict,
    payment_method: str | None = None,
) -> dict | None:
    """
    Record the purchase behind a completed payment.
    At most one payout exists per transaction_id. Returns the new payout,
    or None when one was already recorded.
    """
    transaction_id = payment["transaction_id"]
    if await db.payouts.find_one({"transaction_id": transaction_id}):
        return None

    product = await db.products.find_one({"_id": order.get("product_id")})
    user = None
    if order.get("user_id"):
        user = await db.users.find_one({"_id": order["user_id"]})

    now = datetime.utcnow()
    payout = {
        "user_id": order.get("user_id"),
        "order_id": order["_id"],
        "payment_id": payment["_id"],
        "product_id": order.get("product_id"),
        "transaction_id": transaction_id,
        "amount": payment.get("amount"),
        "payment_method": payment_method or payment.get("payment_method") or "midtrans",
        "status": "completed",
        "purchase_date": now,
        "completed_at": now,
        "product_details": {
            "title": (product or {}).get("title"),
            "description": (product or {}).get("description"),
            "price": (product or {}).get("price"),
            "category": (product or {}).get("category"),
            "images": (product or {}).get("images", []),
        },
        "customer_info": {
            "name": (user or {}).get("username") or "Guest Customer",
            "email": order.get("guest_email") or (user or {}).get("email") or payment.get("customer_email"),
            "phone": (user or {}).get("phone") or "",
        },
        "download_links": build_download_links(product),
        "invoice": {
            "invoice_number": f"INV-{transaction_id}",
            "generated_at": now,
        },
        "refund": {"is_refunded": False},
        "created_at": now,
        "updated_at": now,
    }

    try:
        result = await db.payouts.insert_one(payout)
    except DuplicateKeyError:
        # A concurrent notification recorded it first
        return None

    payout["_id"] = result.inserted_id
    logger.info("PAYOUT_CREATED transaction_id=%s", transaction_id)
    return payout
