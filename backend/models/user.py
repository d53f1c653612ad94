from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from datetime import datetime
from enum import Enum

from utils.hash import check_password_policy

USERNAME_PATTERN = r"^[a-zA-Z0-9_ ]+$"


class RoleName(str, Enum):
    ADMIN = "admin"
    USER = "user"


class UserRegister(BaseModel):
    username: str = Field(..., min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    email: EmailStr
    password: str

    @field_validator("username")
    @classmethod
    def strip_username(cls, v: str) -> str:
        return v.strip()

    @field_validator("password")
    @classmethod
    def password_policy(cls, v: str) -> str:
        return check_password_policy(v)


class AdminCreateUser(UserRegister):
    role: RoleName = RoleName.USER


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=500)
    bio: Optional[str] = Field(None, max_length=500)


class ChangePassword(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


class ForgotPassword(BaseModel):
    email: EmailStr


class ResetPassword(BaseModel):
    password: str
    confirm_password: str

    @field_validator("password")
    @classmethod
    def password_policy(cls, v: str) -> str:
        return check_password_policy(v)


class UserInDB(BaseModel):
    username: str
    email: EmailStr
    password: str
    role_id: str

    phone: Optional[str] = None
    address: Optional[str] = None
    bio: Optional[str] = None
    photo_url: Optional[str] = None

    last_login: Optional[datetime] = None
    reset_password_token: Optional[str] = None
    reset_password_expire: Optional[datetime] = None

    created_at: datetime
    updated_at: datetime
