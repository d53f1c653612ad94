import asyncio
import json
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from config.constants import ACTIVE_PAYMENT_STATUSES, DEFAULT_CURRENCY
from database import get_db
from models.payment import (
    InstantPaymentCreate,
    PaymentCreate,
    PaymentMethod,
    PaymentProof,
    PaymentStatus,
    PaymentStatusUpdate,
    RefundRequest,
)
from utils.audit import PAYMENT_REFUNDED, PAYMENT_STATUS_OVERRIDE, log_audit
from utils.guards import assert_owner_or_admin, page_window, pagination_meta, parse_object_id
from utils.idempotency import (
    complete_idempotency_key,
    release_idempotency_key,
    reserve_idempotency_key,
)
from utils.midtrans import (
    build_snap_params,
    create_snap_transaction,
    generate_transaction_id,
    get_transaction_status,
    map_transaction_status,
    verify_notification_signature,
)
from utils.payment_flow import apply_payment_update
from utils.security import get_current_user, get_optional_user, require_role
from utils.serializers import serialize_order, serialize_payment
from workers.payment_expiry_worker import check_expired_payments

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["Payments"])

NOTIFICATION_SCOPE = "midtrans_notification"
# A webhook never moves a payment out of these
FINAL_PAYMENT_STATUSES = {"completed", "refunded"}


# =====================================================
# HELPERS
# =====================================================

async def _assert_no_active_payment(db, order_id):
    existing = await db.payments.find_one({
        "order_id": order_id,
        "payment_status": {"$in": ACTIVE_PAYMENT_STATUSES},
    })
    if existing:
        raise HTTPException(400, "Payment already exists for this order")


async def _open_payment(
    db,
    *,
    order: dict,
    payment_method: PaymentMethod,
    customer_name: str,
    customer_email: str | None,
    customer_phone: str | None = None,
    is_instant: bool = False,
    is_retry: bool = False,
    notes: str | None = None,
) -> dict:
    """Insert a pending payment for the order, with a Snap checkout when paying via Midtrans."""
    product = await db.products.find_one({"_id": order.get("product_id")})
    transaction_id = generate_transaction_id()
    amount = order.get("total_amount", 0)

    snap_token = None
    payment_url = None
    if payment_method == PaymentMethod.MIDTRANS:
        params = build_snap_params(
            transaction_id=transaction_id,
            amount=amount,
            order=order,
            product=product,
            customer_name=customer_name,
            customer_email=customer_email or "",
            customer_phone=customer_phone or "",
        )
        snap = await asyncio.to_thread(create_snap_transaction, params)
        snap_token = snap.get("token")
        payment_url = snap.get("redirect_url")

    now = datetime.utcnow()
    payment = {
        "order_id": order["_id"],
        "user_id": order.get("user_id"),
        "payment_method": payment_method.value,
        "transaction_id": transaction_id,
        "amount": amount,
        "payment_date": None,
        "payment_status": "pending",
        "currency": DEFAULT_CURRENCY,
        "payment_gateway": "midtrans" if payment_method == PaymentMethod.MIDTRANS else None,
        "gateway_transaction_id": None,
        "gateway_response": None,
        "snap_token": snap_token,
        "payment_url": payment_url,
        "customer_email": customer_email,
        "is_instant_payment": is_instant,
        "is_retry_payment": is_retry,
        "refund_amount": 0,
        "refund_date": None,
        "refund_reason": None,
        "payment_proof": None,
        "notes": notes,
        "failure_reason": None,
        "created_at": now,
        "updated_at": now,
    }
    result = await db.payments.insert_one(payment)
    payment["_id"] = result.inserted_id

    logger.info(
        "PAYMENT_CREATED transaction_id=%s order_id=%s method=%s",
        transaction_id, order["_id"], payment_method.value,
    )
    return payment


async def _payment_for_user(db, payment_id: str, user: dict) -> dict:
    payment = await db.payments.find_one({"_id": parse_object_id(payment_id, "payment id")})
    if not payment:
        raise HTTPException(404, "Payment not found")
    assert_owner_or_admin(user, payment.get("user_id"), "Not authorized to access this payment")
    return payment


async def _order_customer(db, order: dict) -> tuple[str, str | None, str | None]:
    if order.get("user_id"):
        user = await db.users.find_one({"_id": order["user_id"]})
        if user:
            return user.get("username") or "Customer", user.get("email"), user.get("phone")
    return "Guest Customer", order.get("guest_email"), None


def _payment_response(message: str, payment: dict) -> dict:
    return {
        "message": message,
        "payment": serialize_payment(payment),
        "snap_token": payment.get("snap_token"),
        "redirect_url": payment.get("payment_url"),
    }


# =====================================================
# CREATE
# =====================================================

@router.post("", status_code=201)
async def create_payment(
    data: PaymentCreate,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    order = await db.orders.find_one({"_id": parse_object_id(data.order_id, "order id")})
    if not order:
        raise HTTPException(404, "Order not found")
    if order.get("user_id") != user["_id"]:
        raise HTTPException(403, "Not authorized to pay for this order")

    await _assert_no_active_payment(db, order["_id"])

    payment = await _open_payment(
        db,
        order=order,
        payment_method=data.payment_method,
        customer_name=user.get("username") or "Customer",
        customer_email=user.get("email"),
        customer_phone=user.get("phone"),
        notes=data.notes,
    )
    return _payment_response("Payment created successfully", payment)


@router.post("/instant", status_code=201)
async def create_instant_payment(
    data: InstantPaymentCreate,
    user=Depends(get_optional_user),
    db=Depends(get_db),
):
    order = await db.orders.find_one({"_id": parse_object_id(data.order_id, "order id")})
    if not order:
        raise HTTPException(404, "Order not found")

    name, order_email, phone = await _order_customer(db, order)
    email = data.email.lower()
    if email != (order_email or "").lower():
        raise HTTPException(403, "Email does not match this order")

    await _assert_no_active_payment(db, order["_id"])

    payment = await _open_payment(
        db,
        order=order,
        payment_method=data.payment_method,
        customer_name=(user or {}).get("username") or name,
        customer_email=email,
        customer_phone=phone,
        is_instant=True,
    )
    return _payment_response("Payment created successfully", payment)


@router.post("/retry/{order_id}", status_code=201)
async def retry_payment(
    order_id: str,
    db=Depends(get_db),
):
    order = await db.orders.find_one({"_id": parse_object_id(order_id, "order id")})
    if not order:
        raise HTTPException(404, "Order not found")
    if order.get("status") not in {"failed", "pending"}:
        raise HTTPException(400, "Only failed or pending orders can be retried")

    now = datetime.utcnow()
    await db.payments.update_many(
        {"order_id": order["_id"], "payment_status": {"$in": ["failed", "pending"]}},
        {"$set": {"payment_status": "cancelled", "updated_at": now}},
    )

    name, email, phone = await _order_customer(db, order)
    payment = await _open_payment(
        db,
        order=order,
        payment_method=PaymentMethod.MIDTRANS,
        customer_name=name,
        customer_email=email,
        customer_phone=phone,
        is_instant=bool(order.get("is_instant_order")),
        is_retry=True,
    )

    await db.orders.update_one(
        {"_id": order["_id"]},
        {"$set": {"status": "pending", "failure_reason": None, "updated_at": now}},
    )

    return _payment_response("Payment retry created successfully", payment)


# =====================================================
# WEBHOOK
# =====================================================

@router.post("/midtrans/notification")
async def midtrans_notification(
    request: Request,
    db=Depends(get_db),
):
    try:
        notification = await request.json()
    except json.JSONDecodeError:
        raise HTTPException(400, "Invalid notification payload")
    if not isinstance(notification, dict):
        raise HTTPException(400, "Invalid notification payload")

    order_id = notification.get("order_id")
    transaction_status = notification.get("transaction_status")
    if not order_id or not transaction_status or not notification.get("gross_amount"):
        raise HTTPException(400, "Missing required notification fields")

    if not verify_notification_signature(notification):
        logger.warning("MIDTRANS_BAD_SIGNATURE order_id=%s", order_id)
        raise HTTPException(400, "Invalid signature")

    key = f"{order_id}:{transaction_status}:{notification.get('status_code') or ''}"
    cached = await reserve_idempotency_key(db=db, key=key, scope=NOTIFICATION_SCOPE)
    if cached is not None:
        return cached

    try:
        payment = await db.payments.find_one({"transaction_id": order_id})
        if not payment:
            raise HTTPException(404, "Payment not found")

        payment_status, order_status = map_transaction_status(
            transaction_status, notification.get("fraud_status")
        )

        current = payment.get("payment_status")
        if current in FINAL_PAYMENT_STATUSES and payment_status != current:
            logger.warning(
                "MIDTRANS_LATE_NOTIFICATION transaction_id=%s current=%s incoming=%s",
                order_id, current, payment_status,
            )
        else:
            await apply_payment_update(
                db,
                payment=payment,
                payment_status=payment_status,
                order_status=order_status,
                gateway_response=notification,
                payment_type=notification.get("payment_type"),
            )

        response = {"status": "success", "message": "Notification processed successfully"}
        await complete_idempotency_key(db=db, key=key, scope=NOTIFICATION_SCOPE, response=response)
        return response

    except Exception:
        await release_idempotency_key(db=db, key=key, scope=NOTIFICATION_SCOPE)
        raise


# =====================================================
# EXPIRY SWEEP (ON DEMAND)
# =====================================================

@router.post("/check-expired")
async def check_expired(db=Depends(get_db)):
    summary = await check_expired_payments(db)
    return {"message": "Expired payments checked", **summary}


@router.post("/admin/check-expired")
async def admin_check_expired(
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    summary = await check_expired_payments(db)
    return {"message": "Expired payments checked", **summary}


# =====================================================
# READ
# =====================================================

@router.get("")
async def list_my_payments(
    status: Optional[PaymentStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    page, limit, skip = page_window(page, limit)

    query: dict = {"user_id": user["_id"]}
    if status:
        query["payment_status"] = status.value

    total = await db.payments.count_documents(query)
    payments = await (
        db.payments.find(query).sort("created_at", -1).skip(skip).limit(limit).to_list(length=limit)
    )

    return {
        "payments": [serialize_payment(p) for p in payments],
        "pagination": pagination_meta(page, limit, total),
    }


@router.get("/stats")
async def payment_stats(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    by_status = {s.value: {"count": 0, "amount": 0} for s in PaymentStatus}

    async for row in db.payments.aggregate([
        {"$match": {"user_id": user["_id"]}},
        {"$group": {"_id": "$payment_status", "count": {"$sum": 1}, "amount": {"$sum": "$amount"}}},
    ]):
        by_status[row["_id"]] = {"count": row["count"], "amount": row["amount"] or 0}

    return {
        "total_payments": sum(v["count"] for v in by_status.values()),
        "total_paid": by_status["completed"]["amount"],
        "by_status": by_status,
    }


@router.get("/admin/all")
async def admin_list_payments(
    status: Optional[PaymentStatus] = None,
    payment_method: Optional[PaymentMethod] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    page, limit, skip = page_window(page, limit)

    query: dict = {}
    if status:
        query["payment_status"] = status.value
    if payment_method:
        query["payment_method"] = payment_method.value

    total = await db.payments.count_documents(query)
    payments = await (
        db.payments.find(query).sort("created_at", -1).skip(skip).limit(limit).to_list(length=limit)
    )

    return {
        "payments": [serialize_payment(p, include_gateway=True) for p in payments],
        "pagination": pagination_meta(page, limit, total),
    }


@router.get("/instant/{payment_id}")
async def get_instant_payment(
    payment_id: str,
    db=Depends(get_db),
):
    payment = await db.payments.find_one({"_id": parse_object_id(payment_id, "payment id")})
    if not payment:
        raise HTTPException(404, "Payment not found")
    return {"payment": serialize_payment(payment)}


@router.get("/transaction/{transaction_id}")
async def order_from_transaction(
    transaction_id: str,
    db=Depends(get_db),
):
    payment = await db.payments.find_one({"transaction_id": transaction_id})
    if not payment:
        raise HTTPException(404, "Transaction not found")

    order = await db.orders.find_one({"_id": payment["order_id"]})
    if not order:
        raise HTTPException(404, "Order not found")

    product = await db.products.find_one({"_id": order.get("product_id")})
    return {
        "order": serialize_order(order, product),
        "payment_status": payment.get("payment_status"),
        "transaction_id": transaction_id,
    }


@router.get("/{payment_id}")
async def get_payment(
    payment_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    payment = await _payment_for_user(db, payment_id, user)
    order = await db.orders.find_one({"_id": payment["order_id"]})

    data = serialize_payment(payment, include_gateway=user.get("role") == "admin")
    data["order"] = serialize_order(order) if order else None
    return {"payment": data}


@router.get("/{payment_id}/status")
async def check_payment_status(
    payment_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    payment = await _payment_for_user(db, payment_id, user)

    gateway = await asyncio.to_thread(get_transaction_status, payment["transaction_id"])
    transaction_status = gateway.get("transaction_status")
    payment_status, order_status = map_transaction_status(transaction_status, gateway.get("fraud_status"))

    if payment_status != payment.get("payment_status") and payment.get("payment_status") not in FINAL_PAYMENT_STATUSES:
        payment = await apply_payment_update(
            db,
            payment=payment,
            payment_status=payment_status,
            order_status=order_status,
            gateway_response=gateway,
            payment_type=gateway.get("payment_type"),
        )

    return {
        "payment": serialize_payment(payment),
        "gateway_status": transaction_status,
    }


# =====================================================
# USER MUTATIONS
# =====================================================

@router.put("/{payment_id}/status")
async def update_payment_status(
    payment_id: str,
    data: PaymentStatusUpdate,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    payment = await _payment_for_user(db, payment_id, user)

    if data.payment_status != PaymentStatus.CANCELLED:
        raise HTTPException(403, "Users can only cancel payments")
    if payment.get("payment_status") == "completed":
        raise HTTPException(400, "Cannot cancel a completed payment")

    updates = {"payment_status": "cancelled", "updated_at": datetime.utcnow()}
    if data.notes:
        updates["notes"] = data.notes

    await db.payments.update_one({"_id": payment["_id"]}, {"$set": updates})
    payment.update(updates)

    return {"message": "Payment cancelled", "payment": serialize_payment(payment)}


@router.put("/{payment_id}/proof")
async def upload_payment_proof(
    payment_id: str,
    data: PaymentProof,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    payment = await _payment_for_user(db, payment_id, user)
    if payment.get("payment_status") != "pending":
        raise HTTPException(400, "Proof can only be added to a pending payment")

    updates = {
        "payment_proof": data.payment_proof,
        "payment_status": "processing",
        "updated_at": datetime.utcnow(),
    }
    await db.payments.update_one({"_id": payment["_id"]}, {"$set": updates})
    payment.update(updates)

    return {"message": "Payment proof uploaded", "payment": serialize_payment(payment)}


# =====================================================
# ADMIN
# =====================================================

@router.put("/admin/{payment_id}/status")
async def admin_update_payment_status(
    payment_id: str,
    data: PaymentStatusUpdate,
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    payment = await db.payments.find_one({"_id": parse_object_id(payment_id, "payment id")})
    if not payment:
        raise HTTPException(404, "Payment not found")

    previous = payment.get("payment_status")
    order_status = None
    if data.payment_status == PaymentStatus.COMPLETED:
        order = await db.orders.find_one({"_id": payment["order_id"]})
        if order and order.get("status") == "pending":
            order_status = "confirmed"

    payment = await apply_payment_update(
        db,
        payment=payment,
        payment_status=data.payment_status.value,
        order_status=order_status,
    )
    if data.notes:
        await db.payments.update_one({"_id": payment["_id"]}, {"$set": {"notes": data.notes}})
        payment["notes"] = data.notes

    await log_audit(
        db,
        actor=admin,
        action=PAYMENT_STATUS_OVERRIDE,
        target_id=payment["_id"],
        metadata={"from": previous, "to": data.payment_status.value},
    )

    return {"message": "Payment status updated", "payment": serialize_payment(payment, include_gateway=True)}


@router.post("/admin/{payment_id}/refund")
async def admin_refund_payment(
    payment_id: str,
    data: RefundRequest,
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    payment = await db.payments.find_one({"_id": parse_object_id(payment_id, "payment id")})
    if not payment:
        raise HTTPException(404, "Payment not found")
    if payment.get("payment_status") != "completed":
        raise HTTPException(400, "Only completed payments can be refunded")
    if data.refund_amount > float(payment.get("amount") or 0):
        raise HTTPException(400, "Refund amount cannot exceed payment amount")

    now = datetime.utcnow()
    updates = {
        "payment_status": "refunded",
        "refund_amount": data.refund_amount,
        "refund_reason": data.refund_reason,
        "refund_date": now,
        "updated_at": now,
    }
    await db.payments.update_one({"_id": payment["_id"]}, {"$set": updates})
    payment.update(updates)

    await db.orders.update_one(
        {"_id": payment["order_id"]},
        {"$set": {"status": "refunded", "updated_at": now}},
    )
    await db.payouts.update_one(
        {"transaction_id": payment["transaction_id"]},
        {"$set": {
            "status": "refunded",
            "refund.is_refunded": True,
            "refund.refund_amount": data.refund_amount,
            "refund.refund_reason": data.refund_reason,
            "refund.refund_date": now,
            "updated_at": now,
        }},
    )

    await log_audit(
        db,
        actor=admin,
        action=PAYMENT_REFUNDED,
        target_id=payment["_id"],
        metadata={"amount": data.refund_amount, "reason": data.refund_reason},
    )

    return {"message": "Refund processed successfully", "payment": serialize_payment(payment, include_gateway=True)}
