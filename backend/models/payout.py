from pydantic import BaseModel, Field
from enum import Enum


class PayoutStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    REFUND_REQUESTED = "refund_requested"


class PayoutRefundRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
