import re
from urllib.parse import urlparse, parse_qs

YOUTUBE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")
DRIVE_FILE_PATTERNS = [
    re.compile(r"/file/d/([A-Za-z0-9_-]+)"),
    re.compile(r"/open\?id=([A-Za-z0-9_-]+)"),
    re.compile(r"[?&]id=([A-Za-z0-9_-]+)"),
]


# =====================================================
# VIDEO PREVIEW
# =====================================================

def extract_youtube_video_id(url: str | None) -> str | None:
    """Accepts watch?v=, youtu.be/, /embed/ and /shorts/ links."""
    if not url:
        return None

    parsed = urlparse(url.strip())
    host = (parsed.netloc or "").lower().removeprefix("www.").removeprefix("m.")

    candidate = None
    if host == "youtu.be":
        candidate = parsed.path.lstrip("/").split("/")[0]
    elif host.endswith("youtube.com"):
        if parsed.path == "/watch":
            candidate = parse_qs(parsed.query).get("v", [None])[0]
        else:
            parts = [p for p in parsed.path.split("/") if p]
            if len(parts) >= 2 and parts[0] in {"embed", "shorts", "v"}:
                candidate = parts[1]

    if candidate and YOUTUBE_ID_PATTERN.match(candidate):
        return candidate
    return None


def build_preview_video(youtube_url: str | None) -> dict | None:
    video_id = extract_youtube_video_id(youtube_url)
    if not video_id:
        return None
    return {
        "youtube_url": youtube_url,
        "video_id": video_id,
        "embed_url": f"https://www.youtube.com/embed/{video_id}",
        "thumbnail": f"https://img.youtube.com/vi/{video_id}/maxresdefault.jpg",
    }


# =====================================================
# GOOGLE DRIVE
# =====================================================

def google_drive_file_id(url: str | None) -> str | None:
    if not url:
        return None
    for pattern in DRIVE_FILE_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def google_drive_direct_url(file_id: str) -> str:
    return f"https://drive.google.com/uc?export=download&id={file_id}"


def source_download_url(product: dict | None) -> str | None:
    """Google Drive first, then the Cloudinary copy."""
    if not product or not product.get("has_source_code"):
        return None

    source = product.get("source_code") or {}
    file_id = source.get("google_drive_file_id") or google_drive_file_id(source.get("google_drive_url"))
    if file_id:
        return google_drive_direct_url(file_id)
    return source.get("cloudinary_url")


# =====================================================
# RATINGS
# =====================================================

async def rating_summary(db, product_ids: list) -> dict:
    """product_id -> {"rating": avg rounded to 1dp, "total_reviews": n}"""
    if not product_ids:
        return {}

    pipeline = [
        {"$match": {"product_id": {"$in": product_ids}}},
        {
            "$group": {
                "_id": "$product_id",
                "avg": {"$avg": "$rating"},
                "count": {"$sum": 1},
            }
        },
    ]

    out = {}
    async for row in db.reviews.aggregate(pipeline):
        out[row["_id"]] = {
            "rating": round(row["avg"] or 0, 1),
            "total_reviews": row["count"],
        }
    return out


async def attach_ratings(db, products: list[dict]) -> list[dict]:
    summary = await rating_summary(db, [p["_id"] for p in products])
    for product in products:
        stats = summary.get(product["_id"], {"rating": 0, "total_reviews": 0})
        product["rating"] = stats["rating"]
        product["total_reviews"] = stats["total_reviews"]
    return products


def product_summary(product: dict) -> dict:
    return {
        "id": str(product["_id"]),
        "title": product.get("title"),
        "price": product.get("price"),
        "category": product.get("category"),
        "images": product.get("images", []),
        "is_active": product.get("is_active", True),
    }
