"""
Reservation manager: owns the booking-creation transaction and cancellation.

Concurrency: before the authoritative re-quote, every hall row the booking may
land on is locked with SELECT ... FOR UPDATE (ordered by id). Two overlapping
CreateBooking calls on the same hall therefore serialise, and the second one
re-quotes against the first one's committed booking. SQLite has no row locks;
its engine opens every transaction with BEGIN IMMEDIATE (see db/session.py),
which gives the same ordering. On PostgreSQL the bookings table also carries
an exclusion constraint on the hall window; an IntegrityError from it is
reported as a Conflict, any other IntegrityError propagates.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hall_booking.core.config import CANCELLATION_CUTOFF_HOURS
from hall_booking.core.dependencies import Caller
from hall_booking.core.exceptions import Conflict, InvalidState, NotFound, PolicyViolation
from hall_booking.core.logging_config import get_logger
from hall_booking.core.redis import invalidate_user_bookings
from hall_booking.models.booking import Booking
from hall_booking.models.enums import ACTIVE_BOOKING_STATUSES, BookingStatus
from hall_booking.models.hall import Hall
from hall_booking.services import hooks
from hall_booking.services.quote_engine import HALL_UNAVAILABLE, Quote, candidate_halls_query, get_quote
from hall_booking.services.state_machine import BOOKING_TRANSITIONS, sources_for
from hall_booking.services.tickets import IssuedTicket, cancel_tickets, expire_tickets, issue_tickets
from hall_booking.utils.timeutils import utcnow

logger = get_logger("booking")

CANCELLATION_CUTOFF = timedelta(hours=CANCELLATION_CUTOFF_HOURS)
UNPAID_EXPIRY_REASON = "Payment not completed before the booking ended"
HALL_WINDOW_CONSTRAINT = "ex_bookings_hall_window"


@dataclass
class BookingResult:
    booking: Booking
    tickets: list[IssuedTicket]
    quote: Quote


# ---------------------------------------------------------------------
# LOCKING
# ---------------------------------------------------------------------
def lock_halls(db: Session, branch_id: int, persons: int, hall_id: int | None = None) -> list[Hall]:
    if hall_id is not None:
        query = db.query(Hall).filter(Hall.id == hall_id)
    else:
        query = candidate_halls_query(db, branch_id, persons).order_by(None)
    return query.order_by(Hall.id).with_for_update().all()


def is_window_clash(error: IntegrityError) -> bool:
    """Only the hall-window exclusion constraint means "someone booked it first"."""
    diag = getattr(error.orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    if name:
        return name == HALL_WINDOW_CONSTRAINT
    return HALL_WINDOW_CONSTRAINT in str(error.orig)


# ---------------------------------------------------------------------
# CREATE
# ---------------------------------------------------------------------
def create_booking(
    db: Session,
    *,
    user_id: int,
    branch_id: int,
    start_time: datetime,
    duration_hours: int,
    persons: int,
    hall_id: int | None = None,
    add_ons: list[dict] | None = None,
    coupon_code: str | None = None,
    enforce_coupon: bool | None = None,
    contact: dict | None = None,
    now: datetime | None = None,
) -> BookingResult:
    now = now or utcnow()
    contact = contact or {}

    try:
        lock_halls(db, branch_id, persons, hall_id)

        # Authoritative re-quote against committed bookings, under the hall lock
        quote = get_quote(
            db,
            branch_id=branch_id,
            start_time=start_time,
            duration_hours=duration_hours,
            persons=persons,
            hall_id=hall_id,
            add_ons=add_ons,
            coupon_code=coupon_code,
            enforce_coupon=enforce_coupon,
            now=now,
        )
        if not quote.available:
            raise Conflict(quote.reason or HALL_UNAVAILABLE)

        booking = Booking(
            user_id=user_id,
            hall_id=quote.hall.id,
            branch_id=quote.hall.branch_id,
            start_time=quote.start_time,
            duration_hours=duration_hours,
            end_time=quote.end_time,
            persons=persons,
            status=BookingStatus.PENDING,
            total_price=quote.total_price,
            discount_amount=quote.discount,
            coupon_code=coupon_code if quote.discount > 0 else None,
            add_ons=[
                {**line, "unit_price": str(line["unit_price"]), "total": str(line["total"])}
                for line in quote.add_ons
            ],
            contact_name=contact.get("name"),
            contact_phone=contact.get("phone"),
            contact_email=contact.get("email"),
            special_requests=contact.get("special_requests"),
        )
        db.add(booking)
        db.flush()

        issued = issue_tickets(db, booking)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if not is_window_clash(e):
            logger.error(f"Booking insert failed | User={user_id} | Hall={hall_id} | Error={e.orig}")
            raise
        logger.warning(f"Booking insert rejected by constraint | User={user_id} | Hall={hall_id}")
        raise Conflict(HALL_UNAVAILABLE)
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info(
        f"Booking Created | Booking={booking.id} | User={user_id} | Hall={booking.hall_id} "
        f"| Start={booking.start_time.isoformat()} | Total={booking.total_price}"
    )

    # Post-commit, best effort
    invalidate_user_bookings(user_id)
    hooks.notify(hooks.BOOKING_CREATED, user_id, {"booking_id": booking.id})

    return BookingResult(booking=booking, tickets=issued, quote=quote)


# ---------------------------------------------------------------------
# CANCEL
# ---------------------------------------------------------------------
def apply_cancellation(db: Session, booking_id: int, reason: str | None, now: datetime) -> bool:
    """
    Conditional PENDING/CONFIRMED -> CANCELLED plus ticket cascade. No commit.

    Returns False when the booking already left the cancellable states
    (someone else committed first).
    """
    updated = (
        db.query(Booking)
        .filter(
            Booking.id == booking_id,
            Booking.status.in_(sources_for(BOOKING_TRANSITIONS, BookingStatus.CANCELLED)),
        )
        .update(
            {
                Booking.status: BookingStatus.CANCELLED,
                Booking.cancelled_at: now,
                Booking.cancellation_reason: reason,
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        return False
    cancel_tickets(db, booking_id)
    return True


def cancel_booking(
    db: Session,
    booking_id: int,
    user_id: int,
    reason: str | None = None,
    now: datetime | None = None,
) -> Booking:
    now = now or utcnow()

    try:
        booking = (
            db.query(Booking)
            .filter(Booking.id == booking_id, Booking.user_id == user_id)
            .with_for_update()
            .first()
        )
        if not booking:
            raise NotFound("Booking not found")

        if booking.status == BookingStatus.CANCELLED:
            raise InvalidState("Booking is already cancelled")
        if booking.status == BookingStatus.COMPLETED:
            raise InvalidState("Cannot cancel completed booking")

        if now > booking.start_time - CANCELLATION_CUTOFF:
            raise PolicyViolation(f"Cannot cancel within {CANCELLATION_CUTOFF_HOURS} hours of start.")

        if not apply_cancellation(db, booking.id, reason, now):
            raise InvalidState("Booking changed while cancelling, please reload")

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info(f"Booking Cancelled | Booking={booking.id} | User={user_id} | Reason={reason}")

    invalidate_user_bookings(user_id)
    hooks.notify(hooks.BOOKING_CANCELLED, user_id, {"booking_id": booking.id, "reason": reason})
    return booking


# ---------------------------------------------------------------------
# READS
# ---------------------------------------------------------------------
def get_booking(db: Session, booking_id: int, caller: Caller) -> Booking:
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if not booking:
        raise NotFound("Booking not found")
    if booking.user_id != caller.user_id and not caller.can_manage_branch(booking.branch_id):
        raise NotFound("Booking not found")
    return booking


def list_booking_tickets(db: Session, booking_id: int, caller: Caller) -> list:
    return list(get_booking(db, booking_id, caller).tickets)


def list_user_bookings(db: Session, user_id: int) -> list[Booking]:
    return (
        db.query(Booking)
        .filter(Booking.user_id == user_id)
        .order_by(Booking.start_time.desc())
        .all()
    )


# ---------------------------------------------------------------------
# LIFECYCLE SWEEP
# ---------------------------------------------------------------------
def complete_elapsed_bookings(db: Session, now: datetime | None = None) -> dict:
    """
    CONFIRMED bookings whose window ended -> COMPLETED (unscanned tickets EXPIRED).
    PENDING bookings whose window ended -> CANCELLED (never paid).
    """
    now = now or utcnow()
    completed, expired_unpaid = [], []
    touched_users = set()

    try:
        ended = (
            db.query(Booking)
            .filter(Booking.status.in_(ACTIVE_BOOKING_STATUSES), Booking.end_time <= now)
            .with_for_update(skip_locked=True)
            .all()
        )
        for booking in ended:
            if booking.status == BookingStatus.CONFIRMED:
                updated = (
                    db.query(Booking)
                    .filter(Booking.id == booking.id, Booking.status == BookingStatus.CONFIRMED)
                    .update({Booking.status: BookingStatus.COMPLETED}, synchronize_session=False)
                )
                if updated:
                    expire_tickets(db, booking.id)
                    completed.append(booking.id)
                    touched_users.add(booking.user_id)
            elif apply_cancellation(db, booking.id, UNPAID_EXPIRY_REASON, now):
                expired_unpaid.append(booking.id)
                touched_users.add(booking.user_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    for booking_id in completed + expired_unpaid:
        logger.info(f"Booking closed by sweep | Booking={booking_id}")
    for user_id in touched_users:
        invalidate_user_bookings(user_id)

    return {"completed": completed, "cancelled_unpaid": expired_unpaid}
