from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

from hall_booking.models.enums import TicketStatus
from hall_booking.schemas.booking import BookingOut, TicketOut


class ScanRequest(BaseModel):
    token: str = Field(min_length=1)


class ScanResultOut(BaseModel):
    success: bool
    message: str
    ticket_id: Optional[int] = None
    booking_id: Optional[int] = None
    ticket_status: Optional[TicketStatus] = None
    holder_name: Optional[str] = None


class QrOut(BaseModel):
    ticket_id: int
    qr_token: str
    ttl_seconds: int
    expires_at: datetime


class GiftRequest(BaseModel):
    holder_name: str = Field(min_length=1, max_length=100)
    holder_phone: Optional[str] = Field(default=None, max_length=20)


class ScannedTicketOut(TicketOut):
    booking_id: int
    staff_id: Optional[int] = None


class TicketLookupOut(BaseModel):
    ticket: TicketOut
    booking: BookingOut


class ScanStatsOut(BaseModel):
    today: int
    week: int
    month: int
    total: int
    recent_scans: List[ScannedTicketOut] = []
