from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from config.constants import REFUND_WINDOW_DAYS
from database import get_db
from models.payout import PayoutRefundRequest, PayoutStatus
from utils.guards import page_window, pagination_meta
from utils.security import get_current_user
from utils.serializers import serialize_doc

router = APIRouter(prefix="/api/payouts", tags=["Payouts"])


async def _owned_payout(db, transaction_id: str, user: dict) -> dict:
    query = {"transaction_id": transaction_id}
    if user.get("role") != "admin":
        query["user_id"] = user["_id"]

    payout = await db.payouts.find_one(query)
    if not payout:
        raise HTTPException(404, "Purchase not found")
    return payout


@router.get("/history")
async def purchase_history(
    status: Optional[PayoutStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    page, limit, skip = page_window(page, limit)

    query: dict = {"user_id": user["_id"]}
    if status:
        query["status"] = status.value
    if start_date or end_date:
        query["purchase_date"] = {}
        if start_date:
            query["purchase_date"]["$gte"] = start_date
        if end_date:
            query["purchase_date"]["$lte"] = end_date

    total = await db.payouts.count_documents(query)
    payouts = await (
        db.payouts.find(query).sort("purchase_date", -1).skip(skip).limit(limit).to_list(length=limit)
    )

    return {
        "purchases": [serialize_doc(p) for p in payouts],
        "pagination": pagination_meta(page, limit, total),
    }


@router.get("/stats")
async def purchase_stats(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    overview = {s.value: {"count": 0, "amount": 0} for s in PayoutStatus}
    async for row in db.payouts.aggregate([
        {"$match": {"user_id": user["_id"]}},
        {"$group": {"_id": "$status", "count": {"$sum": 1}, "amount": {"$sum": "$amount"}}},
    ]):
        overview[row["_id"]] = {"count": row["count"], "amount": row["amount"] or 0}

    # Monthly spend and categories are computed from this year's completed purchases
    year_start = datetime(datetime.utcnow().year, 1, 1)
    monthly = {m: 0 for m in range(1, 13)}
    categories: dict[str, dict] = {}

    async for p in db.payouts.find({
        "user_id": user["_id"],
        "status": "completed",
        "purchase_date": {"$gte": year_start},
    }):
        amount = p.get("amount") or 0
        monthly[p["purchase_date"].month] += amount

        category = (p.get("product_details") or {}).get("category") or "uncategorized"
        entry = categories.setdefault(category, {"category": category, "count": 0, "amount": 0})
        entry["count"] += 1
        entry["amount"] += amount

    top_categories = sorted(categories.values(), key=lambda c: (-c["count"], -c["amount"]))[:5]

    return {
        "overview": overview,
        "total_purchases": sum(v["count"] for v in overview.values()),
        "total_spent": overview["completed"]["amount"],
        "monthly_spending": [{"month": m, "amount": monthly[m]} for m in range(1, 13)],
        "top_categories": top_categories,
    }


@router.get("/{transaction_id}")
async def purchase_detail(
    transaction_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    payout = await _owned_payout(db, transaction_id, user)
    return {"purchase": serialize_doc(payout)}


@router.get("/{transaction_id}/download")
async def purchase_download(
    transaction_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    payout = await _owned_payout(db, transaction_id, user)
    if payout.get("status") != "completed":
        raise HTTPException(403, "Purchase is not completed")

    now = datetime.utcnow()
    links = payout.get("download_links") or []
    valid = [link for link in links if link.get("expires_at") and link["expires_at"] > now]
    if not valid:
        raise HTTPException(410, "Download links have expired")

    for link in valid:
        link["download_count"] = int(link.get("download_count", 0)) + 1

    await db.payouts.update_one(
        {"_id": payout["_id"]},
        {"$set": {"download_links": links, "updated_at": now}},
    )

    return {
        "transaction_id": transaction_id,
        "product": (payout.get("product_details") or {}).get("title"),
        "download_links": [serialize_doc(link) for link in valid],
    }


@router.post("/{transaction_id}/refund")
async def request_refund(
    transaction_id: str,
    data: PayoutRefundRequest,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    payout = await _owned_payout(db, transaction_id, user)

    if payout.get("status") != "completed":
        raise HTTPException(400, "Only completed purchases can be refunded")
    if (payout.get("refund") or {}).get("is_refunded"):
        raise HTTPException(400, "Purchase already refunded")

    purchased = payout.get("purchase_date") or payout.get("created_at")
    if datetime.utcnow() - purchased > timedelta(days=REFUND_WINDOW_DAYS):
        raise HTTPException(400, f"Refunds are only possible within {REFUND_WINDOW_DAYS} days of purchase")

    now = datetime.utcnow()
    await db.payouts.update_one(
        {"_id": payout["_id"]},
        {"$set": {
            "status": "refund_requested",
            "refund.refund_reason": data.reason,
            "refund.requested_at": now,
            "updated_at": now,
        }},
    )

    return {"message": "Refund request submitted", "transaction_id": transaction_id, "status": "refund_requested"}
