from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from hall_booking.db.session import get_db
from hall_booking.core.dependencies import Caller, get_current_caller, require_staff
from hall_booking.schemas.booking import BookingOut, TicketOut
from hall_booking.schemas.ticket import (
    GiftRequest,
    QrOut,
    ScannedTicketOut,
    ScanRequest,
    ScanResultOut,
    ScanStatsOut,
    TicketLookupOut,
)
from hall_booking.services import tickets

router = APIRouter(prefix="/tickets", tags=["Tickets"])


def _staff_branch(staff: Caller) -> int | None:
    # Admins work every branch; staff only their own
    return None if staff.is_admin else staff.branch_id


# ---------------------------------------------------------------------
# STAFF — SCAN AT THE DOOR
# ---------------------------------------------------------------------
@router.post("/scan", response_model=ScanResultOut)
def scan(data: ScanRequest, db: Session = Depends(get_db), staff: Caller = Depends(require_staff)):
    result = tickets.scan_ticket(db, staff.user_id, data.token, staff_branch_id=_staff_branch(staff))

    ticket = result.ticket
    return {
        "success": result.success,
        "message": result.message,
        "ticket_id": ticket.id if ticket else None,
        "booking_id": ticket.booking_id if ticket else None,
        "ticket_status": ticket.status if ticket else None,
        "holder_name": ticket.holder_name if ticket else None,
    }


# ---------------------------------------------------------------------
# STAFF — LOOKUP WITHOUT CONSUMING
# ---------------------------------------------------------------------
@router.get("/lookup/{token}", response_model=TicketLookupOut)
def lookup(token: str, db: Session = Depends(get_db), staff: Caller = Depends(require_staff)):
    ticket = tickets.lookup_ticket(db, token, staff_branch_id=_staff_branch(staff))
    return {
        "ticket": TicketOut.model_validate(ticket),
        "booking": BookingOut.model_validate(ticket.booking),
    }


# ---------------------------------------------------------------------
# STAFF — MY SCANS
# ---------------------------------------------------------------------
@router.get("/scans/me", response_model=list[ScannedTicketOut])
def my_scans(db: Session = Depends(get_db), staff: Caller = Depends(require_staff)):
    return tickets.list_staff_scans(db, staff.user_id)


@router.get("/scans/me/stats", response_model=ScanStatsOut)
def my_scan_stats(db: Session = Depends(get_db), staff: Caller = Depends(require_staff)):
    stats = tickets.staff_scan_stats(db, staff.user_id)
    stats["recent_scans"] = [ScannedTicketOut.model_validate(t) for t in stats["recent_scans"]]
    return stats


# ---------------------------------------------------------------------
# OWNER — QR DISPLAY TOKEN
# ---------------------------------------------------------------------
@router.get("/{ticket_id}/qr", response_model=QrOut)
def qr_token(ticket_id: int, db: Session = Depends(get_db), caller: Caller = Depends(get_current_caller)):
    return tickets.create_display_token(db, caller.user_id, ticket_id)


# ---------------------------------------------------------------------
# OWNER — GIFT TICKET
# ---------------------------------------------------------------------
@router.post("/{ticket_id}/gift", response_model=TicketOut)
def gift(
    ticket_id: int,
    data: GiftRequest,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    return tickets.gift_ticket(db, caller.user_id, ticket_id, data.holder_name, data.holder_phone)
