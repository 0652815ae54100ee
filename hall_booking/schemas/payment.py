from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional

from hall_booking.models.enums import PaymentMethod, PaymentStatus


class IntentCreate(BaseModel):
    booking_id: int
    method: PaymentMethod


class IntentOut(BaseModel):
    payment_id: int
    client_secret: Optional[str]
    amount: Decimal
    currency: str
    status: PaymentStatus


class ConfirmRequest(BaseModel):
    booking_id: int
    payment_id: int
    gateway_payload: dict = {}


class ConfirmOut(BaseModel):
    success: bool
    payment_id: int
    status: PaymentStatus


class RefundRequest(BaseModel):
    payment_id: int
    # Defaults to the full refundable balance
    amount: Optional[Decimal] = None


class RefundOut(BaseModel):
    success: bool
    payment_id: int
    status: PaymentStatus
    refunded_amount: Decimal
    booking_cancelled: bool


class PaymentOut(BaseModel):
    id: int
    booking_id: int
    amount: Decimal
    currency: str
    method: PaymentMethod
    status: PaymentStatus
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_amount: Decimal
    refunded_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}
