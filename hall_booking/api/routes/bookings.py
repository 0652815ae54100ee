from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from hall_booking.db.session import get_db
from hall_booking.core.dependencies import Caller, get_current_caller, require_admin
from hall_booking.core.config import USER_BOOKINGS_CACHE_TTL
from hall_booking.core.redis import get_cache, set_cache, user_bookings_key
from hall_booking.schemas.booking import (
    BookingCreate,
    BookingCreatedOut,
    BookingOut,
    CancelRequest,
    QuoteOut,
    QuoteRequest,
    TicketOut,
)
from hall_booking.services import reservations
from hall_booking.services.quote_engine import get_quote
from hall_booking.core.logging_config import get_logger

router = APIRouter(prefix="/bookings", tags=["Bookings"])
quote_router = APIRouter(tags=["Quote"])
logger = get_logger("booking")


def _add_ons(data: QuoteRequest) -> list[dict]:
    return [item.model_dump() for item in data.add_ons]


# ---------------------------------------------------------------------
# QUOTE
# ---------------------------------------------------------------------
@quote_router.post("/quote", response_model=QuoteOut)
def quote(data: QuoteRequest, db: Session = Depends(get_db), caller: Caller = Depends(get_current_caller)):
    result = get_quote(
        db,
        branch_id=data.branch_id,
        start_time=data.start_time,
        duration_hours=data.duration_hours,
        persons=data.persons,
        hall_id=data.hall_id,
        add_ons=_add_ons(data),
        coupon_code=data.coupon_code,
        enforce_coupon=data.enforce_coupon,
    )
    return result.to_dict()


# ---------------------------------------------------------------------
# CREATE BOOKING
# ---------------------------------------------------------------------
@router.post("/", response_model=BookingCreatedOut, status_code=status.HTTP_201_CREATED)
def create_booking(data: BookingCreate, db: Session = Depends(get_db), caller: Caller = Depends(get_current_caller)):
    result = reservations.create_booking(
        db,
        user_id=caller.user_id,
        branch_id=data.branch_id,
        start_time=data.start_time,
        duration_hours=data.duration_hours,
        persons=data.persons,
        hall_id=data.hall_id,
        add_ons=_add_ons(data),
        coupon_code=data.coupon_code,
        enforce_coupon=data.enforce_coupon,
        contact=data.contact.model_dump() if data.contact else None,
    )

    return {
        "booking": BookingOut.model_validate(result.booking),
        "tickets": [
            {**TicketOut.model_validate(issued.ticket).model_dump(), "token": issued.token}
            for issued in result.tickets
        ],
        "quote": result.quote.to_dict(),
    }


# ---------------------------------------------------------------------
# USER — MY BOOKINGS
# ---------------------------------------------------------------------
@router.get("/my", response_model=list[BookingOut])
def my_bookings(db: Session = Depends(get_db), caller: Caller = Depends(get_current_caller)):
    key = user_bookings_key(caller.user_id)
    cached = get_cache(key)
    if cached is not None:
        return cached

    bookings = [
        BookingOut.model_validate(b).model_dump(mode="json")
        for b in reservations.list_user_bookings(db, caller.user_id)
    ]
    set_cache(key, bookings, ttl=USER_BOOKINGS_CACHE_TTL)
    return bookings


# ---------------------------------------------------------------------
# ADMIN — CLOSE ELAPSED BOOKINGS
# ---------------------------------------------------------------------
@router.post("/complete-elapsed")
def complete_elapsed(db: Session = Depends(get_db), admin: Caller = Depends(require_admin)):
    result = reservations.complete_elapsed_bookings(db)
    logger.info(
        f"Sweep by Admin={admin.user_id} | Completed={len(result['completed'])} "
        f"| CancelledUnpaid={len(result['cancelled_unpaid'])}"
    )
    return result


# ---------------------------------------------------------------------
# GET BOOKING
# ---------------------------------------------------------------------
@router.get("/{booking_id}", response_model=BookingOut)
def get_booking(booking_id: int, db: Session = Depends(get_db), caller: Caller = Depends(get_current_caller)):
    return reservations.get_booking(db, booking_id, caller)


# ---------------------------------------------------------------------
# BOOKING TICKETS
# ---------------------------------------------------------------------
@router.get("/{booking_id}/tickets", response_model=list[TicketOut])
def booking_tickets(booking_id: int, db: Session = Depends(get_db), caller: Caller = Depends(get_current_caller)):
    return reservations.list_booking_tickets(db, booking_id, caller)


# ---------------------------------------------------------------------
# CANCEL BOOKING
# ---------------------------------------------------------------------
@router.post("/{booking_id}/cancel", response_model=BookingOut)
def cancel_booking(
    booking_id: int,
    data: CancelRequest | None = None,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    return reservations.cancel_booking(db, booking_id, caller.user_id, data.reason if data else None)
