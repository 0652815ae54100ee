from pydantic import AliasChoices, BaseModel, EmailStr, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from hall_booking.models.enums import BookingStatus, TicketStatus


class AddOnIn(BaseModel):
    id: int
    quantity: int = Field(default=1, ge=1)


class QuoteRequest(BaseModel):
    branch_id: int
    start_time: datetime
    duration_hours: int = Field(ge=1)
    persons: int = Field(ge=1)
    hall_id: Optional[int] = None
    add_ons: List[AddOnIn] = []
    coupon_code: Optional[str] = None
    enforce_coupon: Optional[bool] = None


class AddOnLine(BaseModel):
    id: int
    name: Optional[str] = None
    quantity: int
    unit_price: Decimal
    total: Decimal


class QuoteOut(BaseModel):
    hall_id: Optional[int]
    hall_name: Optional[str]
    branch_id: int
    start_time: datetime
    end_time: datetime
    duration_hours: int
    persons: int
    pricing: Optional[dict] = None
    add_ons: List[AddOnLine] = []
    add_ons_cost: Decimal
    coupon_code: Optional[str] = None
    coupon_reason: Optional[str] = None
    discount: Decimal
    total_price: Decimal
    available: bool
    reason: Optional[str] = None


class ContactIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=20)
    email: Optional[EmailStr] = None
    special_requests: Optional[str] = None


class BookingCreate(QuoteRequest):
    contact: Optional[ContactIn] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class TicketOut(BaseModel):
    id: int
    ticket_index: int
    status: TicketStatus
    # VALID past its window reads as EXPIRED
    effective_status: TicketStatus = Field(validation_alias=AliasChoices("current_status", "effective_status"))
    valid_from: datetime
    valid_until: datetime
    scanned_at: Optional[datetime] = None
    holder_name: Optional[str] = None

    model_config = {"from_attributes": True}


class IssuedTicketOut(TicketOut):
    # Raw admission token, only ever returned once
    token: str


class BookingOut(BaseModel):
    id: int
    user_id: int
    hall_id: int
    branch_id: int
    start_time: datetime
    end_time: datetime
    duration_hours: int
    persons: int
    status: BookingStatus
    total_price: Decimal
    discount_amount: Decimal
    coupon_code: Optional[str] = None
    add_ons: Optional[list] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    special_requests: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    tickets: List[TicketOut] = []

    model_config = {"from_attributes": True}


class BookingCreatedOut(BaseModel):
    booking: BookingOut
    tickets: List[IssuedTicketOut]
    quote: QuoteOut
