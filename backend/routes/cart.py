from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError

from config.constants import MAX_ITEM_QUANTITY
from database import get_db
from utils.guards import parse_object_id
from utils.products import product_summary
from utils.security import get_current_user

router = APIRouter(prefix="/api/cart", tags=["Cart"])


class CartAddItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1, le=MAX_ITEM_QUANTITY)


class CartUpdateItem(BaseModel):
    quantity: int = Field(..., ge=1, le=MAX_ITEM_QUANTITY)


async def _increment_quantity(db, key: dict, quantity: int, now: datetime) -> int:
    """Adds to an existing cart row without letting it pass MAX_ITEM_QUANTITY."""
    result = await db.carts.update_one(
        {**key, "quantity": {"$lte": MAX_ITEM_QUANTITY - quantity}},
        {"$inc": {"quantity": quantity}, "$set": {"updated_at": now}},
    )
    if result.modified_count == 0:
        raise HTTPException(400, f"Quantity cannot exceed {MAX_ITEM_QUANTITY}")

    row = await db.carts.find_one(key)
    return row["quantity"]


@router.get("")
async def get_cart(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    cursor = db.carts.find({"user_id": user["_id"]}).sort("added_at", -1)

    items = []
    total_quantity = 0
    total_price = 0.0

    async for row in cursor:
        product = await db.products.find_one({"_id": row["product_id"]})
        if not product:
            continue

        qty = int(row.get("quantity", 1))
        line_total = round(float(product.get("price", 0)) * qty, 2)
        total_quantity += qty
        total_price += line_total

        items.append({
            "id": str(row["_id"]),
            "product_id": str(product["_id"]),
            "product": product_summary(product),
            "quantity": qty,
            "line_total": line_total,
            "added_at": row.get("added_at"),
        })

    return {
        "items": items,
        "summary": {
            "total_items": len(items),
            "total_quantity": total_quantity,
            "total_price": round(total_price, 2),
        },
    }


@router.post("", status_code=201)
async def add_to_cart(
    data: CartAddItem,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    product_id = parse_object_id(data.product_id, "product id")
    product = await db.products.find_one({"_id": product_id})
    if not product:
        raise HTTPException(404, "Product not found")
    if not product.get("is_active", True):
        raise HTTPException(400, "Product is not available")

    now = datetime.utcnow()
    key = {"user_id": user["_id"], "product_id": product_id}
    existing = await db.carts.find_one(key)

    if existing:
        new_quantity = await _increment_quantity(db, key, data.quantity, now)
        return {"message": "Cart updated", "product_id": str(product_id), "quantity": new_quantity}

    try:
        await db.carts.insert_one({
            **key,
            "quantity": data.quantity,
            "added_at": now,
            "updated_at": now,
        })
    except DuplicateKeyError:
        # Concurrent add for the same product; fold into the existing row
        new_quantity = await _increment_quantity(db, key, data.quantity, now)
        return {"message": "Cart updated", "product_id": str(product_id), "quantity": new_quantity}

    return {"message": "Added to cart", "product_id": str(product_id), "quantity": data.quantity}


@router.get("/count")
async def cart_count(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    total_quantity = 0
    count = 0
    async for row in db.carts.find({"user_id": user["_id"]}):
        count += 1
        total_quantity += int(row.get("quantity", 0))
    return {"count": count, "total_quantity": total_quantity}


@router.put("/{product_id}")
async def update_cart_item(
    product_id: str,
    data: CartUpdateItem,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    oid = parse_object_id(product_id, "product id")
    result = await db.carts.update_one(
        {"user_id": user["_id"], "product_id": oid},
        {"$set": {"quantity": data.quantity, "updated_at": datetime.utcnow()}},
    )
    if result.matched_count == 0:
        raise HTTPException(404, "Item not found in cart")

    return {"message": "Cart item updated", "product_id": product_id, "quantity": data.quantity}


@router.delete("/{product_id}")
async def remove_cart_item(
    product_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    oid = parse_object_id(product_id, "product id")
    result = await db.carts.delete_one({"user_id": user["_id"], "product_id": oid})
    if result.deleted_count == 0:
        raise HTTPException(404, "Item not found in cart")

    return {"message": "Item removed from cart"}


@router.delete("")
async def clear_cart(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    result = await db.carts.delete_many({"user_id": user["_id"]})
    return {"message": "Cart cleared", "removed": result.deleted_count}
