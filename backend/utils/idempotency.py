from datetime import datetime
from pymongo.errors import DuplicateKeyError

IDEMPOTENCY_TTL_SECONDS = 60 * 60 * 24  # 24 hours
IN_PROGRESS_STALE_SECONDS = 60 * 10     # 10 minutes

IN_PROGRESS_RESPONSE = {
    "status": "processing",
    "message": "Notification already being processed",
}


async def reserve_idempotency_key(*, db, key: str, scope: str):
    """
    Claim (key, scope) before doing side effects.

    Returns None when the caller owns the key and should proceed.
    Returns the stored response when the same key already completed,
    or IN_PROGRESS_RESPONSE while another delivery is still working on it.
    A reservation older than IN_PROGRESS_STALE_SECONDS is taken over.
    """
    existing = await db.idempotency_keys.find_one({"key": key, "scope": scope})

    if existing:
        if existing.get("status") == "completed":
            return existing.get("response")

        age = (datetime.utcnow() - existing["created_at"]).total_seconds()
        if age <= IN_PROGRESS_STALE_SECONDS:
            return IN_PROGRESS_RESPONSE

        await db.idempotency_keys.delete_one({"_id": existing["_id"]})

    try:
        await db.idempotency_keys.insert_one({
            "key": key,
            "scope": scope,
            "status": "reserved",
            "response": None,
            "created_at": datetime.utcnow(),
        })
    except DuplicateKeyError:
        # Concurrent delivery won the race
        concurrent = await db.idempotency_keys.find_one({"key": key, "scope": scope})
        if concurrent and concurrent.get("status") == "completed":
            return concurrent.get("response")
        return IN_PROGRESS_RESPONSE

    return None


async def complete_idempotency_key(*, db, key: str, scope: str, response: dict):
    await db.idempotency_keys.update_one(
        {"key": key, "scope": scope},
        {
            "$set": {
                "status": "completed",
                "response": response,
                "completed_at": datetime.utcnow(),
            }
        },
    )


async def release_idempotency_key(*, db, key: str, scope: str):
    """Drop a reservation after a failure so the gateway's retry can run again."""
    await db.idempotency_keys.delete_one({"key": key, "scope": scope})
