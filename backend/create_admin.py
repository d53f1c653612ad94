"""
Create an admin account, or promote an existing user to admin.

    python create_admin.py --email admin@example.com --username admin --password Secret123
"""
import argparse
import asyncio
import getpass
import logging
from datetime import datetime

from database import client, get_db
from utils.hash import check_password_policy, hash_password
from utils.indexes import ensure_indexes
from utils.roles import get_role, seed_roles

logger = logging.getLogger("create_admin")


async def create_or_promote_admin(db, *, email: str, username: str, password: str | None) -> str:
    await seed_roles(db)
    admin_role = await get_role(db, "admin")

    email = email.lower()
    existing = await db.users.find_one({"email": email})
    now = datetime.utcnow()

    if existing:
        await db.users.update_one(
            {"_id": existing["_id"]},
            {"$set": {"role_id": admin_role["_id"], "updated_at": now}},
        )
        return "promoted"

    if not password:
        raise ValueError("A password is required to create a new admin")
    check_password_policy(password)

    await db.users.insert_one({
        "username": username,
        "email": email,
        "password": hash_password(password),
        "role_id": admin_role["_id"],
        "phone": None,
        "address": None,
        "bio": None,
        "photo_url": None,
        "last_login": None,
        "created_at": now,
        "updated_at": now,
    })
    return "created"


async def main(args):
    db = get_db()
    await ensure_indexes(db)

    password = args.password
    if not password and not await db.users.find_one({"email": args.email.lower()}):
        password = getpass.getpass("Admin password: ")

    outcome = await create_or_promote_admin(
        db, email=args.email, username=args.username, password=password
    )
    logger.info("Admin %s: %s", outcome, args.email)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    parser = argparse.ArgumentParser(description="Create or promote a marketplace admin")
    parser.add_argument("--email", required=True)
    parser.add_argument("--username", default="admin")
    parser.add_argument("--password")

    try:
        asyncio.run(main(parser.parse_args()))
    finally:
        client.close()
