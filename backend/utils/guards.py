from fastapi import HTTPException
from bson import ObjectId

# -------------------------------
# ObjectId Guard
# -------------------------------

def parse_object_id(value: str, name: str = "id") -> ObjectId:
    if not value or not ObjectId.is_valid(value):
        raise HTTPException(status_code=400, detail=f"Invalid {name} format")
    return ObjectId(value)


# -------------------------------
# Ownership Guard
# -------------------------------

def assert_owner_or_admin(user: dict, owner_id, detail: str = "Not authorized"):
    if user.get("role") == "admin":
        return
    if owner_id is None or owner_id != user["_id"]:
        raise HTTPException(status_code=403, detail=detail)


# -------------------------------
# Pagination
# -------------------------------

def page_window(page: int, limit: int, max_limit: int = 100) -> tuple[int, int, int]:
    page = max(page, 1)
    limit = min(max(limit, 1), max_limit)
    return page, limit, (page - 1) * limit


def pagination_meta(page: int, limit: int, total: int) -> dict:
    pages = (total + limit - 1) // limit if limit else 0
    return {
        "current_page": page,
        "limit": limit,
        "total": total,
        "total_pages": pages,
        "has_next": page * limit < total,
        "has_prev": page > 1,
    }


# -------------------------------
# Sorting
# -------------------------------

def parse_sort(sort: str | None, allowed: set[str], default: str = "created_at") -> tuple[str, int]:
    """'-price' -> ("price", -1). Unknown fields fall back to newest first."""
    sort = (sort or "").strip()
    direction = -1 if sort.startswith("-") else 1
    field = sort.lstrip("-+")
    if field not in allowed:
        return default, -1
    return field, direction


# -------------------------------
# Validation messages
# -------------------------------

def format_validation_errors(errors) -> str:
    parts = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form")]
        msg = err.get("msg", "Invalid value").removeprefix("Value error, ")
        parts.append(f"{'.'.join(loc)}: {msg}" if loc else msg)
    return "; ".join(parts) or "Validation error"
