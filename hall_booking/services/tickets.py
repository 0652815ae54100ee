"""
Ticket authority: issues admission tokens and validates them at the door.

Only a sha256 of each token is stored. The USED transition is a single
conditional UPDATE (``WHERE status = 'valid'``), so two gates scanning the
same ticket at once cannot both succeed.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from hall_booking.core.config import QR_TOKEN_TTL_SECONDS
from hall_booking.core.exceptions import InvalidState, NotFound, UpstreamFailure
from hall_booking.core.logging_config import get_logger
from hall_booking.core.redis import get_token, put_token
from hall_booking.models.booking import Booking
from hall_booking.models.enums import TicketStatus
from hall_booking.models.ticket import Ticket
from hall_booking.services.state_machine import TICKET_TRANSITIONS, sources_for
from hall_booking.utils.timeutils import utcnow
from hall_booking.utils.tokens import generate_display_token, generate_ticket_token, hash_token

logger = get_logger("ticket")

QR_KEY_PREFIX = "share:qr:"

MSG_INVALID = "Invalid code."
MSG_USED = "Already used"
MSG_NOT_NOW = "Not valid for current time"
MSG_NOT_ALLOWED = "Not allowed"
MSG_OK = "Ticket validated successfully"


@dataclass
class IssuedTicket:
    ticket: Ticket
    token: str


@dataclass
class ScanResult:
    success: bool
    message: str
    ticket: Ticket | None = None
    booking: Booking | None = None


# ---------------------------------------------------------------------
# ISSUANCE (runs inside the caller's transaction)
# ---------------------------------------------------------------------
def issue_ticket(db: Session, booking: Booking, index: int) -> IssuedTicket:
    token = generate_ticket_token(booking.id, index)
    ticket = Ticket(
        booking_id=booking.id,
        ticket_index=index,
        token_hash=hash_token(token),
        status=TicketStatus.VALID,
        valid_from=booking.start_time,
        valid_until=booking.end_time,
    )
    db.add(ticket)
    return IssuedTicket(ticket=ticket, token=token)


def issue_tickets(db: Session, booking: Booking) -> list[IssuedTicket]:
    issued = [issue_ticket(db, booking, index) for index in range(booking.persons)]
    db.flush()
    return issued


def _move_valid_tickets(db: Session, booking_id: int, target: TicketStatus) -> int:
    return (
        db.query(Ticket)
        .filter(
            Ticket.booking_id == booking_id,
            Ticket.status.in_(sources_for(TICKET_TRANSITIONS, target)),
        )
        .update({Ticket.status: target}, synchronize_session=False)
    )


def cancel_tickets(db: Session, booking_id: int) -> int:
    """VALID -> CANCELLED for every ticket of the booking. No commit."""
    return _move_valid_tickets(db, booking_id, TicketStatus.CANCELLED)


def expire_tickets(db: Session, booking_id: int) -> int:
    return _move_valid_tickets(db, booking_id, TicketStatus.EXPIRED)


# ---------------------------------------------------------------------
# SCAN
# ---------------------------------------------------------------------
def resolve_token_hash(raw_token: str) -> str:
    """A live QR display token maps to its ticket's hash; anything else is a raw token."""
    mapped = get_token(f"{QR_KEY_PREFIX}{raw_token}")
    return mapped or hash_token(raw_token)


def _rejection(ticket: Ticket, now: datetime) -> str | None:
    if ticket.status == TicketStatus.USED:
        return MSG_USED
    if ticket.status in (TicketStatus.EXPIRED, TicketStatus.CANCELLED):
        return f"Ticket is {ticket.status.value}."
    booking = ticket.booking
    if now < booking.start_time or now > booking.end_time:
        return MSG_NOT_NOW
    return None


def scan_ticket(
    db: Session,
    staff_id: int,
    raw_token: str,
    staff_branch_id: int | None = None,
    now: datetime | None = None,
) -> ScanResult:
    now = now or utcnow()
    ticket = db.query(Ticket).filter(Ticket.token_hash == resolve_token_hash(raw_token)).first()

    if not ticket:
        logger.warning(f"Scan rejected | Staff={staff_id} | Reason=unknown token")
        return ScanResult(False, MSG_INVALID)

    booking = ticket.booking
    if staff_branch_id is not None and staff_branch_id != booking.branch_id:
        return ScanResult(False, MSG_NOT_ALLOWED, ticket, booking)

    rejection = _rejection(ticket, now)
    if rejection:
        logger.info(f"Scan rejected | Ticket={ticket.id} | Staff={staff_id} | Reason={rejection}")
        return ScanResult(False, rejection, ticket, booking)

    try:
        updated = (
            db.query(Ticket)
            .filter(Ticket.id == ticket.id, Ticket.status == TicketStatus.VALID)
            .update(
                {Ticket.status: TicketStatus.USED, Ticket.scanned_at: now, Ticket.staff_id: staff_id},
                synchronize_session=False,
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(ticket)
    if updated != 1:
        # Another gate won the race between our read and our write
        message = _rejection(ticket, now) or MSG_USED
        logger.info(f"Scan lost race | Ticket={ticket.id} | Staff={staff_id}")
        return ScanResult(False, message, ticket, ticket.booking)

    logger.info(f"Ticket scanned | Ticket={ticket.id} | Booking={booking.id} | Staff={staff_id}")
    return ScanResult(True, MSG_OK, ticket, ticket.booking)


# ---------------------------------------------------------------------
# STAFF READS
# ---------------------------------------------------------------------
def lookup_ticket(db: Session, raw_token: str, staff_branch_id: int | None = None) -> Ticket:
    """Door-side lookup by raw or display token. Never changes ticket state."""
    ticket = db.query(Ticket).filter(Ticket.token_hash == resolve_token_hash(raw_token)).first()
    if not ticket:
        raise NotFound("Ticket not found")
    if staff_branch_id is not None and ticket.booking.branch_id != staff_branch_id:
        raise NotFound("Ticket not found")
    return ticket


def list_staff_scans(db: Session, staff_id: int, limit: int | None = None) -> list[Ticket]:
    query = (
        db.query(Ticket)
        .filter(Ticket.staff_id == staff_id, Ticket.scanned_at != None)  # noqa: E711
        .order_by(Ticket.scanned_at.desc(), Ticket.id.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()


def staff_scan_stats(db: Session, staff_id: int, now: datetime | None = None, recent: int = 5) -> dict:
    now = now or utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week = today - timedelta(days=7)
    month = today.replace(day=1)

    scans = list_staff_scans(db, staff_id)
    return {
        "today": sum(1 for t in scans if today <= t.scanned_at <= now),
        "week": sum(1 for t in scans if t.scanned_at >= week),
        "month": sum(1 for t in scans if t.scanned_at >= month),
        "total": len(scans),
        "recent_scans": scans[:recent],
    }


# ---------------------------------------------------------------------
# OWNER OPERATIONS
# ---------------------------------------------------------------------
def get_owned_ticket(db: Session, user_id: int, ticket_id: int) -> Ticket:
    ticket = (
        db.query(Ticket)
        .join(Booking, Booking.id == Ticket.booking_id)
        .filter(Ticket.id == ticket_id, Booking.user_id == user_id)
        .first()
    )
    if not ticket:
        raise NotFound("Ticket not found")
    return ticket


def create_display_token(db: Session, user_id: int, ticket_id: int, now: datetime | None = None) -> dict:
    """Short-lived scannable token for on-screen QR display. Does not touch ticket state."""
    now = now or utcnow()
    ticket = get_owned_ticket(db, user_id, ticket_id)
    if ticket.effective_status(now) != TicketStatus.VALID:
        raise InvalidState(f"Ticket is {ticket.effective_status(now).value}")

    token = generate_display_token()
    if not put_token(f"{QR_KEY_PREFIX}{token}", ticket.token_hash, QR_TOKEN_TTL_SECONDS):
        raise UpstreamFailure("Token store unavailable, please retry")

    return {
        "ticket_id": ticket.id,
        "qr_token": token,
        "ttl_seconds": QR_TOKEN_TTL_SECONDS,
        "expires_at": now + timedelta(seconds=QR_TOKEN_TTL_SECONDS),
    }


def gift_ticket(db: Session, user_id: int, ticket_id: int, holder_name: str, holder_phone: str | None) -> Ticket:
    ticket = get_owned_ticket(db, user_id, ticket_id)
    if ticket.status != TicketStatus.VALID:
        raise InvalidState(f"Ticket is {ticket.status.value}")

    ticket.holder_name = holder_name
    ticket.holder_phone = holder_phone
    db.commit()
    db.refresh(ticket)
    logger.info(f"Ticket gifted | Ticket={ticket.id} | User={user_id}")
    return ticket
