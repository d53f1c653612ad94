import base64
import hashlib
import hmac
import json
import secrets
import time
from urllib import request, error

from fastapi import HTTPException

from config.env import MIDTRANS_SERVER_KEY, MIDTRANS_IS_PRODUCTION, CLIENT_URL

SNAP_API_BASE = (
    "https://app.midtrans.com/snap/v1"
    if MIDTRANS_IS_PRODUCTION
    else "https://app.sandbox.midtrans.com/snap/v1"
)
CORE_API_BASE = (
    "https://api.midtrans.com/v2"
    if MIDTRANS_IS_PRODUCTION
    else "https://api.sandbox.midtrans.com/v2"
)


def _require_server_key() -> str:
    if not MIDTRANS_SERVER_KEY:
        raise HTTPException(status_code=500, detail="Midtrans server key is not configured")
    return MIDTRANS_SERVER_KEY


def _basic_auth_header(server_key: str) -> str:
    token = f"{server_key}:".encode("utf-8")
    return "Basic " + base64.b64encode(token).decode("utf-8")


def _call(req: request.Request, action: str) -> dict:
    try:
        with request.urlopen(req, timeout=15) as resp:
            body = resp.read().decode("utf-8")
            return json.loads(body)
    except error.HTTPError as e:
        details = e.read().decode("utf-8", errors="ignore")
        raise HTTPException(status_code=502, detail=f"Midtrans {action} failed: {details}")
    except Exception:
        raise HTTPException(status_code=502, detail=f"Midtrans {action} failed")


def generate_transaction_id() -> str:
    """TXN-<epoch ms>-<8 hex>; doubles as the Midtrans order_id."""
    return f"TXN-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


def build_snap_params(
    *,
    transaction_id: str,
    amount: float,
    order: dict,
    product: dict | None,
    customer_name: str,
    customer_email: str,
    customer_phone: str = "",
) -> dict:
    quantity = int(order.get("quantity") or 1)
    # Snap requires gross_amount to equal the sum of price * quantity
    unit_price = int(round(float(order.get("unit_price") or float(amount) / quantity)))
    gross_amount = unit_price * quantity
    item_name = (product or {}).get("title") or "Product"

    return {
        "transaction_details": {
            "order_id": transaction_id,
            "gross_amount": gross_amount,
        },
        "credit_card": {"secure": True},
        "customer_details": {
            "first_name": customer_name,
            "email": customer_email,
            "phone": customer_phone or "",
        },
        "item_details": [
            {
                "id": str(order.get("product_id")),
                # Midtrans rejects item names over 50 chars
                "name": item_name[:50],
                "price": unit_price,
                "quantity": quantity,
                "category": (product or {}).get("category") or "general",
            }
        ],
        "callbacks": {
            "finish": f"{CLIENT_URL}/payment/success?order_id={order['_id']}",
            "error": f"{CLIENT_URL}/payment/error?order_id={order['_id']}",
            "pending": f"{CLIENT_URL}/payment/pending?order_id={order['_id']}",
        },
    }


def create_snap_transaction(params: dict) -> dict:
    """Returns {"token": ..., "redirect_url": ...}."""
    server_key = _require_server_key()

    req = request.Request(
        url=f"{SNAP_API_BASE}/transactions",
        data=json.dumps(params).encode("utf-8"),
        headers={
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": _basic_auth_header(server_key),
        },
        method="POST",
    )
    return _call(req, "transaction create")


def get_transaction_status(transaction_id: str) -> dict:
    server_key = _require_server_key()

    req = request.Request(
        url=f"{CORE_API_BASE}/{transaction_id}/status",
        headers={
            "Accept": "application/json",
            "Authorization": _basic_auth_header(server_key),
        },
        method="GET",
    )
    return _call(req, "status check")


def notification_signature(*, order_id: str, status_code: str, gross_amount: str) -> str:
    server_key = _require_server_key()
    raw = f"{order_id}{status_code}{gross_amount}{server_key}".encode("utf-8")
    return hashlib.sha512(raw).hexdigest()


def verify_notification_signature(notification: dict) -> bool:
    expected = notification_signature(
        order_id=str(notification.get("order_id")),
        status_code=str(notification.get("status_code") or "200"),
        gross_amount=str(notification.get("gross_amount")),
    )
    return hmac.compare_digest(expected, str(notification.get("signature_key") or ""))


def map_transaction_status(transaction_status: str | None, fraud_status: str | None):
    """
    Map a Midtrans status onto (payment_status, order_status).
    order_status is None when the order should be left as it is.
    """
    if transaction_status == "capture":
        if fraud_status == "accept":
            return "completed", "confirmed"
        if fraud_status == "challenge":
            return "processing", None
        return "failed", None

    if transaction_status == "settlement":
        return "completed", "confirmed"

    if transaction_status in {"deny", "expire", "cancel"}:
        return "failed", "cancelled"

    return "pending", None
