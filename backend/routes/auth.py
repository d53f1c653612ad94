import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pymongo.errors import DuplicateKeyError

from config.constants import MAX_PHOTO_BYTES, RESET_TOKEN_MINUTES
from config.env import CLIENT_URL
from database import get_db
from models.user import (
    AdminCreateUser,
    ChangePassword,
    ForgotPassword,
    ProfileUpdate,
    ResetPassword,
    UserLogin,
    UserRegister,
)
from utils import email_service
from utils.audit import USER_CREATED_BY_ADMIN, log_audit
from utils.cloudinary import upload_image
from utils.guards import page_window, pagination_meta, parse_object_id
from utils.hash import (
    generate_reset_token,
    hash_password,
    hash_reset_token,
    verify_password,
)
from utils.jwt import create_access_token
from utils.rate_limit import rate_limit
from utils.roles import get_role
from utils.security import get_current_user, require_role
from utils.serializers import serialize_doc, serialize_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


# ======================
# Helpers
# ======================

async def _create_user(db, data: UserRegister, role_name: str) -> dict:
    email = data.email.lower()
    if await db.users.find_one({"$or": [{"email": email}, {"username": data.username}]}):
        raise HTTPException(400, "User with this email or username already exists")

    role = await get_role(db, role_name)
    now = datetime.utcnow()
    user = {
        "username": data.username,
        "email": email,
        "password": hash_password(data.password),
        "role_id": role["_id"],
        "phone": None,
        "address": None,
        "bio": None,
        "photo_url": None,
        "last_login": None,
        "created_at": now,
        "updated_at": now,
    }

    try:
        result = await db.users.insert_one(user)
    except DuplicateKeyError:
        raise HTTPException(400, "User with this email or username already exists")

    user["_id"] = result.inserted_id
    user["role"] = role_name
    return user


def _token_response(user: dict, message: str) -> dict:
    return {
        "message": message,
        "token": create_access_token(user["_id"], user["role"]),
        "token_type": "bearer",
        "user": serialize_user(user),
    }


# ======================
# Register / Login
# ======================

@router.post("/register", status_code=201)
async def register(data: UserRegister, db=Depends(get_db)):
    # Public registration always creates a regular user
    user = await _create_user(db, data, "user")
    return _token_response(user, "User registered successfully")


@router.post("/login")
async def login(data: UserLogin, db=Depends(get_db)):
    email = data.email.lower()

    await rate_limit(
        db=db,
        key=f"login:{email}",
        max_requests=10,
        window_seconds=900,  # 10 attempts per 15 minutes
    )

    user = await db.users.find_one({"email": email})
    if not user or not verify_password(data.password, user.get("password", "")):
        raise HTTPException(401, "Invalid credentials")

    now = datetime.utcnow()
    await db.users.update_one({"_id": user["_id"]}, {"$set": {"last_login": now}})
    user["last_login"] = now

    role = await db.roles.find_one({"_id": user.get("role_id")})
    user["role"] = role["role_name"] if role else "user"

    return _token_response(user, "Login successful")


@router.post("/logout")
async def logout(user=Depends(get_current_user)):
    # Tokens are stateless; the client drops its copy
    return {"message": "Logged out successfully"}


# ======================
# Current User
# ======================

@router.get("/me")
async def me(user=Depends(get_current_user)):
    return {"user": serialize_user(user)}


@router.post("/verify")
async def verify(user=Depends(get_current_user)):
    return {"valid": True, "user": serialize_user(user)}


@router.put("/profile")
async def update_profile(
    data: ProfileUpdate,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    updates = data.model_dump(exclude_unset=True)
    if "username" in updates and updates["username"]:
        updates["username"] = updates["username"].strip()
        taken = await db.users.find_one({
            "username": updates["username"],
            "_id": {"$ne": user["_id"]},
        })
        if taken:
            raise HTTPException(400, "Username already taken")

    if not updates:
        return {"message": "Nothing to update", "user": serialize_user(user)}

    updates["updated_at"] = datetime.utcnow()
    await db.users.update_one({"_id": user["_id"]}, {"$set": updates})
    user.update(updates)

    return {"message": "Profile updated successfully", "user": serialize_user(user)}


@router.post("/profile/image")
async def upload_profile_image(
    file: UploadFile = File(...),
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    if not file.content_type or not file.content_type.startswith("image/"):
        raise HTTPException(400, "Only image files are allowed")

    contents = await file.read()
    if len(contents) > MAX_PHOTO_BYTES:
        raise HTTPException(400, "Image must be 2MB or smaller")
    await file.seek(0)

    result = upload_image(file.file, folder="marketplace/profiles")
    photo_url = result.get("url")
    if not photo_url:
        raise HTTPException(500, "Profile image upload failed")

    await db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {"photo_url": photo_url, "updated_at": datetime.utcnow()}},
    )
    user["photo_url"] = photo_url

    return {"message": "Profile image updated", "user": serialize_user(user)}


@router.put("/change-password")
async def change_password(
    data: ChangePassword,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    if not verify_password(data.current_password, user.get("password", "")):
        raise HTTPException(400, "Current password is incorrect")

    try:
        hashed = hash_password(data.new_password)
    except ValueError as e:
        raise HTTPException(400, str(e))

    await db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {"password": hashed, "updated_at": datetime.utcnow()}},
    )
    return {"message": "Password changed successfully"}


# ======================
# Password Reset
# ======================

@router.post("/forgot-password")
async def forgot_password(data: ForgotPassword, db=Depends(get_db)):
    email = data.email.lower()

    await rate_limit(
        db=db,
        key=f"forgot:{email}",
        max_requests=3,
        window_seconds=900,
    )

    user = await db.users.find_one({"email": email})
    if not user:
        raise HTTPException(404, "There is no user with that email")

    raw_token, token_hash = generate_reset_token()
    await db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {
            "reset_password_token": token_hash,
            "reset_password_expire": datetime.utcnow() + timedelta(minutes=RESET_TOKEN_MINUTES),
        }},
    )

    reset_url = f"{CLIENT_URL}/reset-password/{raw_token}"
    try:
        await email_service.send_reset_password(
            user["email"], user.get("username") or "there", reset_url, RESET_TOKEN_MINUTES
        )
    except Exception:
        logger.exception("RESET_EMAIL_FAILED user_id=%s", user["_id"])
        await db.users.update_one(
            {"_id": user["_id"]},
            {"$unset": {"reset_password_token": "", "reset_password_expire": ""}},
        )
        raise HTTPException(500, "Email could not be sent")

    return {"message": "Password reset email sent"}


@router.put("/reset-password/{token}")
async def reset_password(token: str, data: ResetPassword, db=Depends(get_db)):
    if data.password != data.confirm_password:
        raise HTTPException(400, "Passwords do not match")

    user = await db.users.find_one({
        "reset_password_token": hash_reset_token(token),
        "reset_password_expire": {"$gt": datetime.utcnow()},
    })
    if not user:
        raise HTTPException(400, "Invalid or expired reset token")

    await db.users.update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password": hash_password(data.password), "updated_at": datetime.utcnow()},
            "$unset": {"reset_password_token": "", "reset_password_expire": ""},
        },
    )

    role = await db.roles.find_one({"_id": user.get("role_id")})
    user["role"] = role["role_name"] if role else "user"
    return _token_response(user, "Password reset successful")


# ======================
# Roles
# ======================

@router.get("/roles")
async def list_roles(db=Depends(get_db)):
    roles = await db.roles.find({}).sort("role_name", 1).to_list(length=None)
    return {"roles": [serialize_doc(r) for r in roles]}


# ======================
# Admin
# ======================

@router.post("/admin/create-user", status_code=201)
async def admin_create_user(
    data: AdminCreateUser,
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    user = await _create_user(db, data, data.role.value)

    await log_audit(
        db,
        actor=admin,
        action=USER_CREATED_BY_ADMIN,
        target_id=user["_id"],
        metadata={"role": data.role.value, "email": user["email"]},
    )

    return {"message": "User created successfully", "user": serialize_user(user)}


@router.get("/admin/users")
async def admin_list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    page, limit, skip = page_window(page, limit)

    roles = {r["_id"]: r["role_name"] for r in await db.roles.find({}).to_list(length=None)}
    total = await db.users.count_documents({})
    cursor = db.users.find({}).sort("created_at", -1).skip(skip).limit(limit)

    users = []
    async for u in cursor:
        u["role"] = roles.get(u.get("role_id"), "user")
        users.append(serialize_user(u))

    return {"users": users, "pagination": pagination_meta(page, limit, total)}


@router.get("/user/{user_id}")
async def admin_get_user(
    user_id: str,
    admin=Depends(require_role("admin")),
    db=Depends(get_db),
):
    user = await db.users.find_one({"_id": parse_object_id(user_id, "user id")})
    if not user:
        raise HTTPException(404, "User not found")

    role = await db.roles.find_one({"_id": user.get("role_id")})
    user["role"] = role["role_name"] if role else "user"
    return {"user": serialize_user(user)}
