from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime
from enum import Enum

from config.constants import MAX_ITEM_QUANTITY, ORDER_NOTES_MAX_LENGTH


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    FAILED = "failed"


# Statuses that unlock the purchased files
DOWNLOADABLE_STATUSES = {"confirmed", "completed"}


class OrderCreate(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1, le=MAX_ITEM_QUANTITY)
    shipping_address: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=ORDER_NOTES_MAX_LENGTH)


class OrderFromCart(BaseModel):
    shipping_address: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=ORDER_NOTES_MAX_LENGTH)


class InstantOrderCreate(BaseModel):
    product_id: str
    email: EmailStr
    is_guest: bool = True


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class AdminOrderStatusUpdate(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
