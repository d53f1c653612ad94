from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError

from database import get_db
from utils.guards import page_window, pagination_meta, parse_object_id
from utils.security import get_current_user
from utils.serializers import serialize_doc

router = APIRouter(prefix="/api/reviews", tags=["Reviews"])

# Orders in this state may be reviewed
REVIEWABLE_ORDER_STATUS = "confirmed"


class CreateReview(BaseModel):
    product_id: str
    order_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class UpdateReview(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


async def _with_authors(db, reviews: list[dict]) -> list[dict]:
    user_ids = list({r["user_id"] for r in reviews})
    users = {u["_id"]: u async for u in db.users.find({"_id": {"$in": user_ids}})}

    out = []
    for r in reviews:
        data = serialize_doc(r)
        data.pop("helpful_users", None)
        author = users.get(r["user_id"])
        data["user"] = {
            "id": str(r["user_id"]),
            "username": (author or {}).get("username"),
            "profile_image": (author or {}).get("photo_url"),
        }
        out.append(data)
    return out


async def _rating_stats(db, match: dict) -> dict:
    distribution = {str(i): 0 for i in range(1, 6)}
    total = 0
    rating_sum = 0

    async for row in db.reviews.aggregate([
        {"$match": match},
        {"$group": {"_id": "$rating", "count": {"$sum": 1}}},
    ]):
        distribution[str(row["_id"])] = row["count"]
        total += row["count"]
        rating_sum += row["_id"] * row["count"]

    return {
        "average_rating": round(rating_sum / total, 1) if total else 0,
        "total_reviews": total,
        "rating_distribution": distribution,
    }


async def _review_eligibility(db, user: dict, product_id, order_id) -> Optional[str]:
    """Returns the reason the user cannot review, or None."""
    order = await db.orders.find_one({"_id": order_id})
    if not order:
        return "Order not found"
    if order.get("user_id") != user["_id"]:
        return "Order does not belong to you"
    if order.get("product_id") != product_id:
        return "Product does not match this order"
    if order.get("status") != REVIEWABLE_ORDER_STATUS:
        return "Order must be confirmed before it can be reviewed"

    existing = await db.reviews.find_one({
        "user_id": user["_id"],
        "product_id": product_id,
        "order_id": order_id,
    })
    if existing:
        return "You have already reviewed this product for this order"
    return None


# ======================
# Create
# ======================

@router.post("", status_code=201)
async def create_review(
    data: CreateReview,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    product_id = parse_object_id(data.product_id, "product id")
    order_id = parse_object_id(data.order_id, "order id")

    if not await db.products.find_one({"_id": product_id}):
        raise HTTPException(404, "Product not found")

    reason = await _review_eligibility(db, user, product_id, order_id)
    if reason == "Order not found":
        raise HTTPException(404, reason)
    if reason == "Order does not belong to you":
        raise HTTPException(403, reason)
    if reason:
        raise HTTPException(400, reason)

    now = datetime.utcnow()
    review = {
        "user_id": user["_id"],
        "product_id": product_id,
        "order_id": order_id,
        "rating": data.rating,
        "comment": (data.comment or "").strip(),
        "is_verified_purchase": True,
        "helpful_count": 0,
        "helpful_users": [],
        "created_at": now,
        "updated_at": now,
    }

    try:
        result = await db.reviews.insert_one(review)
    except DuplicateKeyError:
        raise HTTPException(400, "You have already reviewed this product for this order")

    review["_id"] = result.inserted_id
    return {"message": "Review created successfully", "review": (await _with_authors(db, [review]))[0]}


# ======================
# Read
# ======================

@router.get("")
async def list_reviews(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
):
    page, limit, skip = page_window(page, limit)

    total = await db.reviews.count_documents({})
    reviews = await db.reviews.find({}).sort("created_at", -1).skip(skip).limit(limit).to_list(length=limit)

    return {
        "reviews": await _with_authors(db, reviews),
        "stats": await _rating_stats(db, {}),
        "pagination": pagination_meta(page, limit, total),
    }


@router.get("/product/{product_id}")
async def product_reviews(
    product_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
):
    oid = parse_object_id(product_id, "product id")
    page, limit, skip = page_window(page, limit)

    query = {"product_id": oid}
    total = await db.reviews.count_documents(query)
    reviews = await db.reviews.find(query).sort("created_at", -1).skip(skip).limit(limit).to_list(length=limit)
    stats = await _rating_stats(db, query)

    return {
        "reviews": await _with_authors(db, reviews),
        "average_rating": stats["average_rating"],
        "total_reviews": stats["total_reviews"],
        "rating_distribution": stats["rating_distribution"],
        "pagination": pagination_meta(page, limit, total),
    }


@router.get("/user")
async def my_reviews(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    reviews = await db.reviews.find({"user_id": user["_id"]}).sort("created_at", -1).to_list(length=None)

    product_ids = list({r["product_id"] for r in reviews})
    products = {p["_id"]: p async for p in db.products.find({"_id": {"$in": product_ids}})}

    out = []
    for r in reviews:
        data = serialize_doc(r)
        data.pop("helpful_users", None)
        product = products.get(r["product_id"])
        data["product"] = {
            "id": str(r["product_id"]),
            "title": (product or {}).get("title"),
            "images": (product or {}).get("images", []),
        }
        out.append(data)

    return {"reviews": out, "count": len(out)}


@router.get("/can-review/{product_id}/{order_id}")
async def can_review(
    product_id: str,
    order_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    reason = await _review_eligibility(
        db,
        user,
        parse_object_id(product_id, "product id"),
        parse_object_id(order_id, "order id"),
    )
    return {"can_review": reason is None, "reason": reason}


@router.get("/has-reviewed/{product_id}")
async def has_reviewed(
    product_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    oid = parse_object_id(product_id, "product id")
    review = await db.reviews.find_one({"user_id": user["_id"], "product_id": oid})
    return {
        "has_reviewed": review is not None,
        "review": serialize_doc(review) if review else None,
    }


# ======================
# Update / Delete
# ======================

@router.put("/{review_id}")
async def update_review(
    review_id: str,
    data: UpdateReview,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    review = await db.reviews.find_one({"_id": parse_object_id(review_id, "review id")})
    if not review:
        raise HTTPException(404, "Review not found")
    if review["user_id"] != user["_id"]:
        raise HTTPException(403, "Not authorized to update this review")

    updates = data.model_dump(exclude_unset=True, exclude_none=True)
    if "comment" in updates:
        updates["comment"] = updates["comment"].strip()
    updates["updated_at"] = datetime.utcnow()

    await db.reviews.update_one({"_id": review["_id"]}, {"$set": updates})
    review.update(updates)

    return {"message": "Review updated successfully", "review": (await _with_authors(db, [review]))[0]}


@router.delete("/{review_id}")
async def delete_review(
    review_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    review = await db.reviews.find_one({"_id": parse_object_id(review_id, "review id")})
    if not review:
        raise HTTPException(404, "Review not found")
    if review["user_id"] != user["_id"]:
        raise HTTPException(403, "Not authorized to delete this review")

    await db.reviews.delete_one({"_id": review["_id"]})
    return {"message": "Review deleted successfully"}


@router.post("/{review_id}/helpful")
async def toggle_helpful(
    review_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    review = await db.reviews.find_one({"_id": parse_object_id(review_id, "review id")})
    if not review:
        raise HTTPException(404, "Review not found")

    if user["_id"] in review.get("helpful_users", []):
        await db.reviews.update_one(
            {"_id": review["_id"]},
            {"$pull": {"helpful_users": user["_id"]}, "$inc": {"helpful_count": -1}},
        )
        marked = False
    else:
        await db.reviews.update_one(
            {"_id": review["_id"]},
            {"$addToSet": {"helpful_users": user["_id"]}, "$inc": {"helpful_count": 1}},
        )
        marked = True

    updated = await db.reviews.find_one({"_id": review["_id"]})
    return {"helpful": marked, "helpful_count": updated.get("helpful_count", 0)}
