from datetime import datetime

from fastapi import HTTPException

DEFAULT_ROLES = {
    "admin": "Administrator with full access to products, orders and payments",
    "user": "Regular customer account",
}


async def seed_roles(db):
    """Insert the fixed role set. Safe to run on every startup."""
    for role_name, description in DEFAULT_ROLES.items():
        await db.roles.update_one(
            {"role_name": role_name},
            {
                "$setOnInsert": {
                    "role_name": role_name,
                    "description": description,
                    "created_at": datetime.utcnow(),
                }
            },
            upsert=True,
        )


async def get_role(db, role_name: str) -> dict:
    role = await db.roles.find_one({"role_name": role_name})
    if not role:
        raise HTTPException(status_code=500, detail=f"Role '{role_name}' not found in database")
    return role
