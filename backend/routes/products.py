import json
import logging
import re
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import ValidationError

from config.constants import (
    MAX_IMAGE_BYTES,
    MAX_PRODUCT_IMAGES,
    MAX_SOURCE_CODE_BYTES,
    ZIP_MIME_TYPES,
)
from database import get_db
from models.product import ProductFields, ProductUpdate, RemoveImages
from utils.audit import PRODUCT_HARD_DELETED, log_audit
from utils.cloudinary import delete_images, public_id_from_url, upload_image, upload_zip
from utils.guards import (
    format_validation_errors,
    page_window,
    pagination_meta,
    parse_object_id,
    parse_sort,
)
from utils.products import attach_ratings, build_preview_video, google_drive_file_id
from utils.security import get_optional_user, require_role
from utils.serializers import serialize_doc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["Products"])

SORT_FIELDS = {"created_at", "updated_at", "price", "title"}
PRODUCT_IMAGE_FOLDER = "marketplace-products"


# =========================
# HELPERS
# =========================

def _public_product(product: dict, include_source: bool = False) -> dict:
    data = serialize_doc(product)
    if not include_source:
        # Paid files stay behind the order download endpoints
        data.pop("source_code", None)
    return data


def _parse_list_field(value: Optional[str]) -> Optional[list[str]]:
    """JSON array or comma separated string."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return []
    if value.startswith("["):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            raise HTTPException(400, "video_urls must be a JSON array or comma separated list")
        return [str(v).strip() for v in parsed if str(v).strip()]
    return [v.strip() for v in value.split(",") if v.strip()]


def _parse_specifications(value: Optional[str]) -> Optional[dict]:
    if value is None:
        return None
    if not value.strip():
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        raise HTTPException(400, "specifications must be a JSON object")
    if not isinstance(parsed, dict):
        raise HTTPException(400, "specifications must be a JSON object")
    return {str(k): str(v) for k, v in parsed.items()}


async def _upload_product_images(files: list[UploadFile]) -> list[str]:
    urls = []
    for file in files:
        if not file.content_type or not file.content_type.startswith("image/"):
            raise HTTPException(400, "Only image files are allowed")
        contents = await file.read()
        if len(contents) > MAX_IMAGE_BYTES:
            raise HTTPException(400, "Each image must be 5MB or smaller")
        await file.seek(0)

        result = upload_image(file.file, folder=PRODUCT_IMAGE_FOLDER)
        if not result.get("url"):
            raise HTTPException(500, "Image upload failed")
        urls.append(result["url"])
    return urls


async def _build_source_code(
    *,
    admin: dict,
    source_code: Optional[UploadFile],
    google_drive_url: Optional[str],
    source_description: Optional[str],
    version: Optional[str],
) -> Optional[dict]:
    now = datetime.utcnow()
    base = {
        "upload_date": now,
        "description": source_description,
        "version": version or "1.0.0",
        "uploaded_by": admin["_id"],
    }

    if source_code is not None and source_code.filename:
        name = source_code.filename
        if not name.lower().endswith(".zip") and source_code.content_type not in ZIP_MIME_TYPES:
            raise HTTPException(400, "Source code must be a .zip file")

        contents = await source_code.read()
        if len(contents) > MAX_SOURCE_CODE_BYTES:
            raise HTTPException(400, "Source code must be 50MB or smaller")
        await source_code.seek(0)

        result = upload_zip(source_code.file, name)
        return {
            **base,
            "file_name": result.get("public_id"),
            "original_name": name,
            "cloudinary_url": result.get("url"),
            "cloudinary_public_id": result.get("public_id"),
            "mime_type": source_code.content_type or "application/zip",
            "file_size": result.get("file_size") or len(contents),
        }

    if google_drive_url:
        if "drive.google.com" not in google_drive_url:
            raise HTTPException(400, "Source code link must be a Google Drive URL")
        file_id = google_drive_file_id(google_drive_url)
        if not file_id:
            raise HTTPException(400, "Could not read the file id from the Google Drive URL")
        return {
            **base,
            "file_name": f"{file_id}.zip",
            "original_name": "source-code.zip",
            "google_drive_url": google_drive_url,
            "google_drive_file_id": file_id,
            "mime_type": "application/zip",
        }

    return None


# =========================
# PUBLIC LISTING
# =========================

@router.get("")
async def list_products(
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    search: Optional[str] = None,
    sort: str = "-created_at",
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
):
    page, limit, skip = page_window(page, limit)

    query: dict = {"is_active": True}

    if category:
        query["category"] = category.lower()

    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price

    if search:
        pattern = re.escape(search.strip())
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"category": {"$regex": pattern, "$options": "i"}},
        ]

    field, direction = parse_sort(sort, SORT_FIELDS)
    total = await db.products.count_documents(query)
    products = await (
        db.products.find(query).sort(field, direction).skip(skip).limit(limit).to_list(length=limit)
    )
    await attach_ratings(db, products)

    return {
        "products": [_public_product(p) for p in products],
        "pagination": pagination_meta(page, limit, total),
    }


@router.get("/category/{category}")
async def products_by_category(
    category: str,
    sort: str = "-created_at",
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
):
    page, limit, skip = page_window(page, limit)
    query = {"category": category.lower(), "is_active": True}

    field, direction = parse_sort(sort, SORT_FIELDS)
    total = await db.products.count_documents(query)
    products = await (
        db.products.find(query).sort(field, direction).skip(skip).limit(limit).to_list(length=limit)
    )
    await attach_ratings(db, products)

    return {
        "category": category.lower(),
        "products": [_public_product(p) for p in products],
        "pagination": pagination_meta(page, limit, total),
    }


# =========================
# ADMIN VIEWS (STATIC ROUTES FIRST)
# =========================

@router.get("/admin/my-products")
async def admin_products(
    all_products: bool = Query(False, alias="all"),
    include_inactive: bool = False,
    sort: str = "-created_at",
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    page, limit, skip = page_window(page, limit)

    query: dict = {}
    if not all_products:
        query["user_id"] = admin["_id"]
    if not include_inactive:
        query["is_active"] = True

    field, direction = parse_sort(sort, SORT_FIELDS)
    total = await db.products.count_documents(query)
    products = await (
        db.products.find(query).sort(field, direction).skip(skip).limit(limit).to_list(length=limit)
    )
    await attach_ratings(db, products)

    return {
        "products": [_public_product(p, include_source=True) for p in products],
        "pagination": pagination_meta(page, limit, total),
    }


@router.get("/admin/stats")
async def product_stats(
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    total = await db.products.count_documents({})
    active = await db.products.count_documents({"is_active": True})

    avg_rows = await db.products.aggregate([
        {"$group": {"_id": None, "avg_price": {"$avg": "$price"}}},
    ]).to_list(length=1)
    avg_price = round(avg_rows[0]["avg_price"] or 0, 2) if avg_rows else 0

    categories = []
    async for row in db.products.aggregate([
        {"$group": {"_id": "$category", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
    ]):
        categories.append({"category": row["_id"], "count": row["count"]})

    return {
        "total_products": total,
        "active_products": active,
        "inactive_products": total - active,
        "average_price": avg_price,
        "categories": categories,
    }


# =========================
# PRODUCT DETAIL
# =========================

@router.get("/{product_id}")
async def get_product(
    product_id: str,
    user=Depends(get_optional_user),
    db=Depends(get_db),
):
    product = await db.products.find_one({"_id": parse_object_id(product_id, "product id")})
    is_admin = bool(user and user.get("role") == "admin")
    if not product or (not product.get("is_active", True) and not is_admin):
        raise HTTPException(404, "Product not found")

    await attach_ratings(db, [product])

    seller = await db.users.find_one({"_id": product.get("user_id")})
    data = _public_product(product, include_source=is_admin)
    data["seller"] = {
        "id": str(seller["_id"]),
        "username": seller.get("username"),
        "profile_image": seller.get("photo_url"),
    } if seller else None
    data["has_preview_video"] = bool(product.get("preview_video"))
    data["has_videos"] = bool(product.get("video_urls"))

    return {"product": data}


# =========================
# ADMIN MUTATIONS
# =========================

@router.post("", status_code=201)
async def create_product(
    title: str = Form(...),
    description: str = Form(...),
    price: float = Form(...),
    category: str = Form(...),
    benefit1: str = Form(...),
    benefit2: str = Form(...),
    benefit3: str = Form(...),
    video_urls: Optional[str] = Form(None),
    youtube_url: Optional[str] = Form(None),
    specifications: Optional[str] = Form(None),
    is_active: bool = Form(True),
    google_drive_url: Optional[str] = Form(None),
    source_description: Optional[str] = Form(None),
    version: Optional[str] = Form(None),
    images: list[UploadFile] = File(...),
    source_code: Optional[UploadFile] = File(None),
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    try:
        fields = ProductFields(
            title=title.strip(),
            description=description.strip(),
            price=price,
            category=category.strip().lower(),
            benefit1=benefit1.strip(),
            benefit2=benefit2.strip(),
            benefit3=benefit3.strip(),
            video_urls=_parse_list_field(video_urls) or [],
            youtube_url=youtube_url or None,
            specifications=_parse_specifications(specifications) or {},
            is_active=is_active,
        )
    except ValidationError as e:
        raise HTTPException(400, format_validation_errors(e.errors()))

    images = [f for f in images if f.filename]
    if not images:
        raise HTTPException(400, "At least one product image is required")
    if len(images) > MAX_PRODUCT_IMAGES:
        raise HTTPException(400, f"A product can have at most {MAX_PRODUCT_IMAGES} images")

    preview_video = build_preview_video(fields.youtube_url)
    if fields.youtube_url and not preview_video:
        raise HTTPException(400, "Invalid YouTube URL")

    source = await _build_source_code(
        admin=admin,
        source_code=source_code,
        google_drive_url=google_drive_url,
        source_description=source_description,
        version=version,
    )
    image_urls = await _upload_product_images(images)

    now = datetime.utcnow()
    product = {
        **fields.model_dump(exclude={"youtube_url"}),
        "user_id": admin["_id"],
        "images": image_urls,
        "preview_video": preview_video,
        "has_source_code": source is not None,
        "source_code": source,
        "created_at": now,
        "updated_at": now,
    }

    result = await db.products.insert_one(product)
    product["_id"] = result.inserted_id
    logger.info("PRODUCT_CREATED product_id=%s admin_id=%s", result.inserted_id, admin["_id"])

    return {
        "message": "Product created successfully",
        "product": _public_product(product, include_source=True),
    }


@router.put("/{product_id}")
async def update_product(
    product_id: str,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[float] = Form(None),
    category: Optional[str] = Form(None),
    benefit1: Optional[str] = Form(None),
    benefit2: Optional[str] = Form(None),
    benefit3: Optional[str] = Form(None),
    video_urls: Optional[str] = Form(None),
    youtube_url: Optional[str] = Form(None),
    specifications: Optional[str] = Form(None),
    is_active: Optional[bool] = Form(None),
    google_drive_url: Optional[str] = Form(None),
    source_description: Optional[str] = Form(None),
    version: Optional[str] = Form(None),
    images: Optional[list[UploadFile]] = File(None),
    source_code: Optional[UploadFile] = File(None),
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    oid = parse_object_id(product_id, "product id")
    product = await db.products.find_one({"_id": oid})
    if not product:
        raise HTTPException(404, "Product not found")

    raw = {
        "title": title.strip() if title is not None else None,
        "description": description.strip() if description is not None else None,
        "price": price,
        "category": category.strip().lower() if category is not None else None,
        "benefit1": benefit1.strip() if benefit1 is not None else None,
        "benefit2": benefit2.strip() if benefit2 is not None else None,
        "benefit3": benefit3.strip() if benefit3 is not None else None,
        "video_urls": _parse_list_field(video_urls),
        "youtube_url": youtube_url,
        "specifications": _parse_specifications(specifications),
        "is_active": is_active,
    }
    try:
        fields = ProductUpdate(**{k: v for k, v in raw.items() if v is not None})
    except ValidationError as e:
        raise HTTPException(400, format_validation_errors(e.errors()))

    updates = fields.model_dump(exclude_unset=True, exclude={"youtube_url"})

    if fields.youtube_url is not None:
        if fields.youtube_url.strip():
            preview_video = build_preview_video(fields.youtube_url)
            if not preview_video:
                raise HTTPException(400, "Invalid YouTube URL")
            updates["preview_video"] = preview_video
        else:
            updates["preview_video"] = None

    new_images = [f for f in (images or []) if f.filename]
    if new_images:
        if len(product.get("images", [])) + len(new_images) > MAX_PRODUCT_IMAGES:
            raise HTTPException(400, f"A product can have at most {MAX_PRODUCT_IMAGES} images")
        updates["images"] = product.get("images", []) + await _upload_product_images(new_images)

    source = await _build_source_code(
        admin=admin,
        source_code=source_code,
        google_drive_url=google_drive_url,
        source_description=source_description,
        version=version,
    )
    if source is not None:
        updates["source_code"] = source
        updates["has_source_code"] = True

    updates["updated_at"] = datetime.utcnow()
    await db.products.update_one({"_id": oid}, {"$set": updates})
    product.update(updates)

    return {
        "message": "Product updated successfully",
        "product": _public_product(product, include_source=True),
    }


@router.delete("/{product_id}")
async def soft_delete_product(
    product_id: str,
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    oid = parse_object_id(product_id, "product id")
    result = await db.products.update_one(
        {"_id": oid},
        {"$set": {"is_active": False, "updated_at": datetime.utcnow()}},
    )
    if result.matched_count == 0:
        raise HTTPException(404, "Product not found")

    return {"message": "Product deactivated successfully"}


@router.delete("/{product_id}/hard")
async def hard_delete_product(
    product_id: str,
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    oid = parse_object_id(product_id, "product id")
    product = await db.products.find_one({"_id": oid})
    if not product:
        raise HTTPException(404, "Product not found")

    await db.products.delete_one({"_id": oid})
    delete_images([public_id_from_url(u) for u in product.get("images", [])])

    await log_audit(
        db,
        actor=admin,
        action=PRODUCT_HARD_DELETED,
        target_id=oid,
        metadata={"title": product.get("title")},
    )

    return {"message": "Product permanently deleted"}


@router.patch("/{product_id}/remove-images")
async def remove_product_images(
    product_id: str,
    data: RemoveImages,
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    oid = parse_object_id(product_id, "product id")
    product = await db.products.find_one({"_id": oid})
    if not product:
        raise HTTPException(404, "Product not found")

    current = product.get("images", [])
    to_remove = [u for u in data.image_urls if u in current]
    if not to_remove:
        raise HTTPException(400, "None of the given images belong to this product")

    remaining = [u for u in current if u not in to_remove]
    await db.products.update_one(
        {"_id": oid},
        {"$set": {"images": remaining, "updated_at": datetime.utcnow()}},
    )
    delete_images([public_id_from_url(u) for u in to_remove])

    return {
        "message": f"{len(to_remove)} image(s) removed",
        "images": remaining,
    }
