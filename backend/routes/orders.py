import logging
import secrets
import string
import time
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from database import get_db
from models.order import (
    DOWNLOADABLE_STATUSES,
    AdminOrderStatusUpdate,
    InstantOrderCreate,
    OrderCreate,
    OrderFromCart,
    OrderStatus,
    OrderStatusUpdate,
)
from utils.audit import ORDER_STATUS_OVERRIDE, log_audit
from utils.guards import assert_owner_or_admin, page_window, pagination_meta, parse_object_id
from utils.products import product_summary, source_download_url
from utils.security import get_current_user, get_optional_user, require_role
from utils.serializers import serialize_order

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["Orders"])

# Counted towards "total spent"
SPENT_STATUSES = ["delivered", "processing", "shipped"]


# =====================================================
# HELPERS
# =====================================================

def generate_order_number() -> str:
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(9))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def build_order(
    product: dict,
    quantity: int,
    *,
    user_id=None,
    guest_email: str | None = None,
    is_instant: bool = False,
    shipping_address: str | None = None,
    notes: str | None = None,
) -> dict:
    if not user_id and not guest_email:
        raise HTTPException(400, "Order needs a user or a guest email")

    unit_price = float(product.get("price", 0))
    now = datetime.utcnow()
    return {
        "order_number": generate_order_number(),
        "user_id": user_id,
        "guest_email": guest_email,
        "product_id": product["_id"],
        "unit_price": unit_price,
        "quantity": quantity,
        "total_amount": round(unit_price * quantity, 2),
        "is_instant_order": is_instant,
        "status": "pending",
        "order_date": now,
        "shipping_address": shipping_address,
        "notes": notes,
        "estimated_delivery": None,
        "tracking_number": None,
        "failure_reason": None,
        "created_at": now,
        "updated_at": now,
    }


async def _active_product(db, product_id: str) -> dict:
    product = await db.products.find_one({"_id": parse_object_id(product_id, "product id")})
    if not product:
        raise HTTPException(404, "Product not found")
    if not product.get("is_active", True):
        raise HTTPException(400, "Product is not available")
    return product


async def _order_detail(db, order: dict) -> dict:
    product = await db.products.find_one({"_id": order.get("product_id")})
    data = serialize_order(order, product)
    data["items"] = [{
        "product": product_summary(product) if product else None,
        "quantity": order.get("quantity", 1),
        "unit_price": order.get("unit_price"),
        "total": order.get("total_amount"),
    }]
    return data


async def _downloadable_order(db, order_id: str, user: dict | None) -> tuple[dict, str, dict]:
    order = await db.orders.find_one({"_id": parse_object_id(order_id, "order id")})
    if not order:
        raise HTTPException(404, "Order not found")

    if user and order.get("user_id"):
        assert_owner_or_admin(user, order["user_id"], "Not authorized to access this order")

    if order.get("status") not in DOWNLOADABLE_STATUSES:
        raise HTTPException(403, "Order is not paid yet")

    product = await db.products.find_one({"_id": order.get("product_id")})
    url = source_download_url(product)
    if not url:
        raise HTTPException(404, "No downloadable file for this product")

    return order, url, product


# =====================================================
# CREATE
# =====================================================

@router.post("", status_code=201)
async def create_order(
    data: OrderCreate,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    product = await _active_product(db, data.product_id)

    order = build_order(
        product,
        data.quantity,
        user_id=user["_id"],
        shipping_address=data.shipping_address,
        notes=data.notes,
    )
    result = await db.orders.insert_one(order)
    order["_id"] = result.inserted_id

    # Ordered products leave the cart
    await db.carts.delete_one({"user_id": user["_id"], "product_id": product["_id"]})

    logger.info("ORDER_CREATED order_id=%s user_id=%s", order["_id"], user["_id"])
    return {"message": "Order created successfully", "order": await _order_detail(db, order)}


@router.post("/from-cart", status_code=201)
async def create_orders_from_cart(
    data: OrderFromCart,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    rows = await db.carts.find({"user_id": user["_id"]}).to_list(length=None)
    if not rows:
        raise HTTPException(400, "Cart is empty")

    orders = []
    for row in rows:
        product = await db.products.find_one({"_id": row["product_id"]})
        if not product or not product.get("is_active", True):
            continue

        order = build_order(
            product,
            int(row.get("quantity", 1)),
            user_id=user["_id"],
            shipping_address=data.shipping_address,
            notes=data.notes,
        )
        result = await db.orders.insert_one(order)
        order["_id"] = result.inserted_id
        orders.append(order)

    if not orders:
        raise HTTPException(400, "No available products in cart")

    await db.carts.delete_many({"user_id": user["_id"]})

    return {
        "message": f"{len(orders)} order(s) created successfully",
        "orders": [serialize_order(o) for o in orders],
        "total_amount": round(sum(o["total_amount"] for o in orders), 2),
    }


@router.post("/instant", status_code=201)
async def create_instant_order(
    data: InstantOrderCreate,
    db=Depends(get_db),
):
    product = await _active_product(db, data.product_id)

    email = data.email.lower()
    registered = await db.users.find_one({"email": email})

    if registered:
        order = build_order(product, 1, user_id=registered["_id"], is_instant=True)
    else:
        order = build_order(product, 1, guest_email=email, is_instant=True)

    result = await db.orders.insert_one(order)
    order["_id"] = result.inserted_id

    return {
        "message": "Order created successfully",
        "order": await _order_detail(db, order),
        "is_guest": registered is None,
    }


# =====================================================
# READ
# =====================================================

@router.get("")
async def list_my_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    page, limit, skip = page_window(page, limit)

    query: dict = {"user_id": user["_id"]}
    if status:
        query["status"] = status.value

    total = await db.orders.count_documents(query)
    cursor = db.orders.find(query).sort("order_date", -1).skip(skip).limit(limit)

    orders = []
    async for order in cursor:
        product = await db.products.find_one({"_id": order.get("product_id")})
        orders.append(serialize_order(order, product))

    return {"orders": orders, "pagination": pagination_meta(page, limit, total)}


@router.get("/stats")
async def order_stats(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    breakdown = {s.value: 0 for s in OrderStatus}
    total_orders = 0
    total_spent = 0.0

    async for row in db.orders.aggregate([
        {"$match": {"user_id": user["_id"]}},
        {"$group": {"_id": "$status", "count": {"$sum": 1}, "amount": {"$sum": "$total_amount"}}},
    ]):
        breakdown[row["_id"]] = row["count"]
        total_orders += row["count"]
        if row["_id"] in SPENT_STATUSES:
            total_spent += row["amount"] or 0

    return {
        "total_orders": total_orders,
        "total_spent": round(total_spent, 2),
        "by_status": breakdown,
    }


@router.get("/admin/all")
async def admin_list_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    page, limit, skip = page_window(page, limit)

    query: dict = {}
    if status:
        query["status"] = status.value

    total = await db.orders.count_documents(query)
    cursor = db.orders.find(query).sort("order_date", -1).skip(skip).limit(limit)

    orders = []
    async for order in cursor:
        product = await db.products.find_one({"_id": order.get("product_id")})
        data = serialize_order(order, product)
        if order.get("user_id"):
            buyer = await db.users.find_one({"_id": order["user_id"]})
            data["customer"] = {
                "id": str(order["user_id"]),
                "username": (buyer or {}).get("username"),
                "email": (buyer or {}).get("email"),
            }
        else:
            data["customer"] = {"id": None, "username": "Guest", "email": order.get("guest_email")}
        orders.append(data)

    return {"orders": orders, "pagination": pagination_meta(page, limit, total)}


@router.get("/guest/{order_id}")
async def get_guest_order(
    order_id: str,
    db=Depends(get_db),
):
    order = await db.orders.find_one({"_id": parse_object_id(order_id, "order id")})
    if not order:
        raise HTTPException(404, "Order not found")
    return {"order": await _order_detail(db, order)}


@router.get("/{order_id}/download-url")
async def order_download_url(
    order_id: str,
    user=Depends(get_optional_user),
    db=Depends(get_db),
):
    order, url, product = await _downloadable_order(db, order_id, user)
    source = (product or {}).get("source_code") or {}
    return {
        "download_url": url,
        "file_name": source.get("original_name") or "source-code.zip",
        "order_number": order.get("order_number"),
    }


@router.get("/{order_id}/download")
async def order_download(
    order_id: str,
    user=Depends(get_optional_user),
    db=Depends(get_db),
):
    _, url, _ = await _downloadable_order(db, order_id, user)
    return RedirectResponse(url, status_code=302)


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    user=Depends(get_optional_user),
    db=Depends(get_db),
):
    order = await db.orders.find_one({"_id": parse_object_id(order_id, "order id")})
    if not order:
        raise HTTPException(404, "Order not found")

    if user and order.get("user_id"):
        assert_owner_or_admin(user, order["user_id"], "Not authorized to access this order")

    return {"order": await _order_detail(db, order)}


# =====================================================
# STATUS
# =====================================================

@router.put("/{order_id}/status")
async def update_order_status(
    order_id: str,
    data: OrderStatusUpdate,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    order = await db.orders.find_one({"_id": parse_object_id(order_id, "order id")})
    if not order:
        raise HTTPException(404, "Order not found")

    assert_owner_or_admin(user, order.get("user_id"), "Not authorized to update this order")

    if user.get("role") != "admin" and data.status != OrderStatus.CANCELLED:
        raise HTTPException(403, "Users can only cancel orders")

    if data.status == OrderStatus.CANCELLED and order.get("status") == "delivered":
        raise HTTPException(400, "Cannot cancel a delivered order")

    await db.orders.update_one(
        {"_id": order["_id"]},
        {"$set": {"status": data.status.value, "updated_at": datetime.utcnow()}},
    )
    order["status"] = data.status.value

    return {"message": "Order status updated", "order": serialize_order(order)}


@router.put("/admin/{order_id}/status")
async def admin_update_order_status(
    order_id: str,
    data: AdminOrderStatusUpdate,
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    order = await db.orders.find_one({"_id": parse_object_id(order_id, "order id")})
    if not order:
        raise HTTPException(404, "Order not found")

    updates = {"status": data.status.value, "updated_at": datetime.utcnow()}
    if data.tracking_number is not None:
        updates["tracking_number"] = data.tracking_number
    if data.estimated_delivery is not None:
        updates["estimated_delivery"] = data.estimated_delivery

    await db.orders.update_one({"_id": order["_id"]}, {"$set": updates})

    await log_audit(
        db,
        actor=admin,
        action=ORDER_STATUS_OVERRIDE,
        target_id=order["_id"],
        metadata={"from": order.get("status"), "to": data.status.value},
    )

    order.update(updates)
    return {"message": "Order status updated", "order": serialize_order(order)}
