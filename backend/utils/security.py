from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from bson import ObjectId
from jose import JWTError

from utils.jwt import decode_token
from database import get_db

security = HTTPBearer(auto_error=False)


async def _load_user(db, token: str):
    try:
        payload = decode_token(token)
    except JWTError:
        return None

    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        return None

    user = await db.users.find_one({"_id": ObjectId(user_id)})
    if not user:
        return None

    role = await db.roles.find_one({"_id": user.get("role_id")})
    user["role"] = role["role_name"] if role else "user"
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db=Depends(get_db),
):
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized to access this route",
        )

    user = await _load_user(db, credentials.credentials)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized to access this route",
        )

    return user


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db=Depends(get_db),
):
    """Guest-friendly variant: a missing or bad token just means no user."""
    if not credentials:
        return None
    return await _load_user(db, credentials.credentials)


def require_role(required_role: str):
    async def checker(user=Depends(get_current_user)):
        if user.get("role") != required_role:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"User role {user.get('role')} is not authorized to access this route",
            )
        return user

    return checker
