from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from enum import Enum


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    E_WALLET = "e_wallet"
    COD = "cod"
    PAYPAL = "paypal"
    STRIPE = "stripe"
    MIDTRANS = "midtrans"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    EXPIRED = "expired"


class PaymentCreate(BaseModel):
    order_id: str
    payment_method: PaymentMethod = PaymentMethod.MIDTRANS
    notes: Optional[str] = Field(None, max_length=500)


class InstantPaymentCreate(BaseModel):
    order_id: str
    email: EmailStr
    payment_method: PaymentMethod = PaymentMethod.MIDTRANS


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus
    notes: Optional[str] = Field(None, max_length=500)


class PaymentProof(BaseModel):
    payment_proof: str = Field(..., min_length=1)


class RefundRequest(BaseModel):
    refund_amount: float = Field(..., gt=0)
    refund_reason: str = Field(..., min_length=1, max_length=500)
