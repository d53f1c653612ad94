from datetime import datetime

# Admin actions recorded in audit_logs
ORDER_STATUS_OVERRIDE = "ORDER_STATUS_OVERRIDE"
PAYMENT_STATUS_OVERRIDE = "PAYMENT_STATUS_OVERRIDE"
PAYMENT_REFUNDED = "PAYMENT_REFUNDED"
USER_CREATED_BY_ADMIN = "USER_CREATED_BY_ADMIN"
PRODUCT_HARD_DELETED = "PRODUCT_HARD_DELETED"


async def log_audit(
    db,
    *,
    actor: dict,
    action: str,
    target_id=None,
    metadata: dict | None = None,
):
    await db.audit_logs.insert_one({
        "actor_id": actor["_id"],
        "actor_role": actor.get("role"),
        "action": action,
        "target_id": target_id,
        "metadata": metadata or {},
        "created_at": datetime.utcnow(),
    })
