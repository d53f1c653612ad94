from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo.errors import DuplicateKeyError

from database import get_db
from utils.guards import page_window, pagination_meta, parse_object_id
from utils.products import product_summary
from utils.security import get_current_user

router = APIRouter(prefix="/api/favorites", tags=["Favorites"])


async def _existing_product(db, product_id: str) -> dict:
    product = await db.products.find_one({"_id": parse_object_id(product_id, "product id")})
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@router.get("")
async def list_favorites(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    page, limit, skip = page_window(page, limit)

    # Only favorites whose product is still listed
    product_ids = [
        f["product_id"]
        async for f in db.favorites.find({"user_id": user["_id"]}).sort("created_at", -1)
    ]
    active = {
        p["_id"]: p
        async for p in db.products.find({"_id": {"$in": product_ids}, "is_active": True})
    }
    ordered = [active[pid] for pid in product_ids if pid in active]

    page_items = ordered[skip:skip + limit]
    return {
        "favorites": [product_summary(p) for p in page_items],
        "pagination": pagination_meta(page, limit, len(ordered)),
    }


@router.post("/toggle/{product_id}")
async def toggle_favorite(
    product_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    product = await _existing_product(db, product_id)
    key = {"user_id": user["_id"], "product_id": product["_id"]}

    result = await db.favorites.delete_one(key)
    if result.deleted_count:
        return {"message": "Removed from favorites", "is_favorite": False}

    await db.favorites.update_one(
        key,
        {"$setOnInsert": {"created_at": datetime.utcnow()}},
        upsert=True,
    )
    return {"message": "Added to favorites", "is_favorite": True}


@router.get("/check/{product_id}")
async def check_favorite(
    product_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    oid = parse_object_id(product_id, "product id")
    favorite = await db.favorites.find_one({"user_id": user["_id"], "product_id": oid})
    return {"is_favorite": favorite is not None}


@router.post("/{product_id}", status_code=201)
async def add_favorite(
    product_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    product = await _existing_product(db, product_id)
    key = {"user_id": user["_id"], "product_id": product["_id"]}

    if await db.favorites.find_one(key):
        raise HTTPException(400, "Product already in favorites")

    try:
        await db.favorites.insert_one({**key, "created_at": datetime.utcnow()})
    except DuplicateKeyError:
        raise HTTPException(400, "Product already in favorites")

    return {"message": "Added to favorites", "is_favorite": True}


@router.delete("/{product_id}")
async def remove_favorite(
    product_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    oid = parse_object_id(product_id, "product id")
    result = await db.favorites.delete_one({"user_id": user["_id"], "product_id": oid})
    if result.deleted_count == 0:
        raise HTTPException(404, "Product not in favorites")

    return {"message": "Removed from favorites", "is_favorite": False}
