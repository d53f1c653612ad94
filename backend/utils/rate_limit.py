from datetime import datetime, timedelta
from fastapi import HTTPException

async def rate_limit(
    db,
    key: str,
    max_requests: int,
    window_seconds: int,
):
    """
    Fixed-window limiter backed by the rate_limits collection.
    The window restarts once the stored record is older than window_seconds.
    """
    now = datetime.utcnow()
    window_start = now - timedelta(seconds=window_seconds)

    record = await db.rate_limits.find_one({"key": key})

    if record and record["created_at"] < window_start:
        await db.rate_limits.delete_one({"_id": record["_id"]})
        record = None

    if record and record["count"] >= max_requests:
        raise HTTPException(
            status_code=429,
            detail="Too many requests. Please try again later.",
        )

    await db.rate_limits.update_one(
        {"key": key},
        {
            "$inc": {"count": 1},
            "$setOnInsert": {"created_at": now},
        },
        upsert=True,
    )
